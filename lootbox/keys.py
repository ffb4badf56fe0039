"""Signing keys and the secrets file.

The secrets file is a flat JSON object. ``payer_key`` and ``admin_key`` hold
64-byte secret keys written as comma-separated integers (a JSON list or a
base58 string is accepted too); every admin rotation keeps the previous admin
under ``old_admin_<n>_key``.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from solders.keypair import Keypair

from .errors import SecretsError

logger = logging.getLogger("lootbox")

PAYER_KEY = "payer_key"
ADMIN_KEY = "admin_key"
QUICK_NODE_KEY = "quick_node_key"
_OLD_ADMIN_RE = re.compile(r"^old_admin_(\d+)_key$")

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


@dataclass(frozen=True)
class SigningContext:
    payer: Keypair
    admin: Keypair
    quick_node_key: Optional[str] = None


def parse_keypair(value: Union[str, list, dict]) -> Keypair:
    if isinstance(value, dict):
        value = value.get("secretKey") or value.get("secret_key")
    try:
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                value = json.loads(text)
            elif "," in text:
                value = [int(part) for part in text.split(",")]
            else:
                return Keypair.from_base58_string(text)
        return Keypair.from_bytes(bytes(value))
    except Exception as exc:  # noqa: BLE001
        raise SecretsError(f"invalid secret key: {exc}") from exc


def encode_keypair(kp: Keypair) -> str:
    return ",".join(str(b) for b in bytes(kp))


def load_keypair_file(path: Union[str, Path]) -> Keypair:
    path = Path(path)
    if not path.exists():
        raise SecretsError(f"missing keypair at {path}")
    return parse_keypair(json.loads(path.read_text()))


def load_secrets(path: Union[str, Path]) -> Dict[str, object]:
    path = Path(path)
    if not path.exists():
        raise SecretsError(f"secrets file {path} does not exist")
    try:
        data = json.loads(path.read_text())
    except ValueError as exc:
        raise SecretsError(f"secrets file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SecretsError(f"secrets file {path} must hold a JSON object")
    return data


def load_signing_context(path: Union[str, Path]) -> SigningContext:
    secrets = load_secrets(path)
    for name in (PAYER_KEY, ADMIN_KEY):
        if name not in secrets:
            raise SecretsError(f"secrets file {path} has no {name}")
    ctx = SigningContext(
        payer=parse_keypair(secrets[PAYER_KEY]),
        admin=parse_keypair(secrets[ADMIN_KEY]),
        quick_node_key=secrets.get(QUICK_NODE_KEY),
    )
    logger.info("signing_context payer=%s admin=%s", ctx.payer.pubkey(), ctx.admin.pubkey())
    return ctx


def backup_path(path: Union[str, Path]) -> Path:
    path = Path(path)
    return path.with_name(f"{path.stem}-old{path.suffix}")


def _atomic_write(path: Path, data: Dict[str, object]) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2)
        fh.flush()
        os.fsync(fh.fileno())
    os.chmod(tmp, 0o600)
    os.replace(tmp, path)


def rotate_admin(path: Union[str, Path], new_admin: Keypair) -> Path:
    """Make ``new_admin`` the admin key, keeping the old one and a backup file.

    Each write goes through a temporary file and ``os.replace`` so a crash
    leaves either the old or the new content on disk. Returns the backup path.
    """
    path = Path(path)
    secrets = load_secrets(path)
    if ADMIN_KEY not in secrets:
        raise SecretsError(f"secrets file {path} has no {ADMIN_KEY}")
    keys_count = len(secrets)

    old_index = 0
    for key in secrets:
        match = _OLD_ADMIN_RE.match(key)
        if match:
            old_index = max(old_index, int(match.group(1)))
    updated = dict(secrets)
    updated[f"old_admin_{old_index + 1}_key"] = secrets[ADMIN_KEY]
    updated[ADMIN_KEY] = encode_keypair(new_admin)

    backup = backup_path(path)
    if backup.exists():
        previous = load_secrets(backup)
        if len(previous) + 1 != keys_count:
            raise SecretsError(
                f"backup {backup} holds {len(previous)} keys but {path} holds {keys_count}; "
                "check both files and remove the backup before rotating"
            )
    _atomic_write(backup, secrets)
    _atomic_write(path, updated)

    if len(load_secrets(path)) != keys_count + 1:
        raise SecretsError(f"rotation produced an unexpected key count in {path}; backup is at {backup}")
    logger.info("admin_rotated new_admin=%s backup=%s", new_admin.pubkey(), backup)
    return backup


def vanity_keypair(prefix: str, max_attempts: Optional[int] = None, progress_every: int = 10_000) -> Keypair:
    """Generate keypairs until one's address starts with ``prefix``."""
    bad = [ch for ch in prefix if ch not in BASE58_ALPHABET]
    if bad:
        raise ValueError(f"prefix {prefix!r} has characters outside the base58 alphabet: {''.join(bad)}")
    expected = 58 ** len(prefix)
    logger.info("vanity_search prefix=%s expected_attempts=%s", prefix, expected)
    attempts = 0
    while True:
        kp = Keypair()
        attempts += 1
        if str(kp.pubkey()).startswith(prefix):
            logger.info("vanity_found address=%s attempts=%s", kp.pubkey(), attempts)
            return kp
        if max_attempts is not None and attempts >= max_attempts:
            raise RuntimeError(f"no address with prefix {prefix} after {attempts} attempts")
        if attempts % progress_every == 0:
            logger.info("vanity_progress attempts=%s last=%s", attempts, kp.pubkey())
