"""Transaction assembly and submission.

A transaction that fits in one packet is sent as a legacy transaction. One
that does not has its non-signer accounts moved into a freshly created
address lookup table and is sent as a v0 transaction referencing that table.
The final transaction also deactivates the table so its rent can be
reclaimed later with ``close-alt``.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment, Confirmed, Finalized
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from .alt import (
    MAX_ADDRESSES_PER_EXTEND,
    build_create_lookup_table_ix,
    build_deactivate_lookup_table_ix,
    build_extend_lookup_table_ix,
)
from .errors import LookupTableLeaked, MissingSigner, TransactionFailed, TransactionSizeExceeded

PACKET_DATA_SIZE = 1232

logger = logging.getLogger("lootbox")


def required_signers(payer: Pubkey, instructions: Sequence[Instruction]) -> List[Pubkey]:
    """Fee payer followed by every account flagged as signer, in first-seen order."""
    keys = [payer]
    for ix in instructions:
        for meta in ix.accounts:
            if meta.is_signer and meta.pubkey not in keys:
                keys.append(meta.pubkey)
    return keys


def lookup_table_candidates(instructions: Sequence[Instruction]) -> List[Pubkey]:
    """Distinct accounts that may live in a lookup table, in first-seen order.

    Signers and invoked programs must stay in the static key list.
    """
    programs = {ix.program_id for ix in instructions}
    signers = {meta.pubkey for ix in instructions for meta in ix.accounts if meta.is_signer}
    seen = set()
    addresses: List[Pubkey] = []
    for ix in instructions:
        for meta in ix.accounts:
            key = meta.pubkey
            if key in programs or key in signers or key in seen:
                continue
            seen.add(key)
            addresses.append(key)
    return addresses


def _preflight_logs(exc: RPCException) -> List[str]:
    payload = exc.args[0] if exc.args else None
    logs = getattr(getattr(payload, "data", None), "logs", None)
    return list(logs) if logs else []


def _rpc_detail(exc: Exception) -> str:
    # SolanaRpcException keeps its text in error_msg, not in args
    return getattr(exc, "error_msg", None) or str(exc)


class TransactionPacker:
    def __init__(
        self,
        client: Client,
        payer: Keypair,
        commitment: Commitment = Confirmed,
        size_limit: int = PACKET_DATA_SIZE,
        alt_batch_size: int = MAX_ADDRESSES_PER_EXTEND,
    ) -> None:
        if not 1 <= alt_batch_size <= MAX_ADDRESSES_PER_EXTEND:
            raise ValueError(f"alt_batch_size must be between 1 and {MAX_ADDRESSES_PER_EXTEND}")
        self.client = client
        self.payer = payer
        self.commitment = commitment
        self.size_limit = size_limit
        self.alt_batch_size = alt_batch_size

    def send(
        self,
        instructions: Sequence[Instruction],
        signers: Sequence[Keypair] = (),
        compute_units: Optional[int] = None,
    ) -> Signature:
        """Sign with the payer plus ``signers`` and submit, confirming the result.

        Keypairs in ``signers`` that no instruction asks for are left out.
        ``MissingSigner`` is raised before anything is sent when a required
        signer has no keypair.
        """
        ixs = list(instructions)
        if compute_units:
            ixs.insert(0, set_compute_unit_limit(compute_units))
        keypairs = self._keypairs(ixs, signers)
        blockhash, last_valid = self._latest_blockhash()
        raw = self._sign_legacy(ixs, keypairs, blockhash)
        size = len(raw) if raw is not None else math.inf
        logger.info("packer_size_check size=%s limit=%s instructions=%s", size, self.size_limit, len(ixs))
        if raw is not None and size <= self.size_limit:
            return self._send_and_confirm(raw, last_valid)
        return self._send_with_lookup_table(ixs, keypairs, size)

    def measure(self, instructions: Sequence[Instruction], signers: Sequence[Keypair] = ()) -> float:
        """Legacy serialized size of ``instructions``; infinite when they cannot be signed."""
        ixs = list(instructions)
        keypairs = self._keypairs(ixs, signers)
        blockhash, _ = self._latest_blockhash()
        raw = self._sign_legacy(ixs, keypairs, blockhash)
        return len(raw) if raw is not None else math.inf

    def _keypairs(self, ixs: List[Instruction], signers: Sequence[Keypair]) -> List[Keypair]:
        available = {self.payer.pubkey(): self.payer}
        for kp in signers:
            available.setdefault(kp.pubkey(), kp)
        required = required_signers(self.payer.pubkey(), ixs)
        missing = [key for key in required if key not in available]
        if missing:
            raise MissingSigner(missing)
        return [available[key] for key in required]

    def _latest_blockhash(self) -> Tuple[Hash, int]:
        try:
            value = self.client.get_latest_blockhash(commitment=self.commitment).value
        except (RPCException, SolanaRpcException) as exc:
            raise TransactionFailed(f"cannot fetch blockhash: {_rpc_detail(exc)}") from exc
        return value.blockhash, value.last_valid_block_height

    def _sign_legacy(self, ixs: List[Instruction], keypairs: List[Keypair], blockhash: Hash) -> Optional[bytes]:
        try:
            tx = Transaction.new_signed_with_payer(ixs, self.payer.pubkey(), keypairs, blockhash)
            return bytes(tx)
        except Exception as exc:  # noqa: BLE001
            logger.info("packer_legacy_unsignable error=%s", exc)
            return None

    def _send_and_confirm(self, raw: bytes, last_valid: int, commitment: Optional[Commitment] = None) -> Signature:
        commitment = commitment or self.commitment
        try:
            resp = self.client.send_raw_transaction(
                raw, opts=TxOpts(skip_preflight=False, preflight_commitment=self.commitment)
            )
        except RPCException as exc:
            raise TransactionFailed(f"transaction rejected: {exc}", logs=_preflight_logs(exc)) from exc
        except SolanaRpcException as exc:
            raise TransactionFailed(f"transaction not delivered: {_rpc_detail(exc)}") from exc
        sig = resp.value
        logger.info("packer_sent sig=%s bytes=%s", sig, len(raw))
        try:
            status = self.client.confirm_transaction(sig, commitment=commitment, last_valid_block_height=last_valid)
        except (
            RPCException, SolanaRpcException, UnconfirmedTxError, TransactionExpiredBlockheightExceededError
        ) as exc:
            raise TransactionFailed(
                f"transaction {sig} was not confirmed: {_rpc_detail(exc)}", signature=sig, logs=self._fetch_logs(sig)
            ) from exc
        result = status.value[0] if status.value else None
        if result is not None and result.err is not None:
            raise TransactionFailed(f"transaction {sig} failed: {result.err}", signature=sig, logs=self._fetch_logs(sig))
        logger.info("packer_confirmed sig=%s commitment=%s", sig, commitment)
        return sig

    def _fetch_logs(self, sig: Signature) -> List[str]:
        try:
            resp = self.client.get_transaction(sig, commitment=Confirmed, max_supported_transaction_version=0)
            meta = resp.value.transaction.meta if resp.value else None
            return list(meta.log_messages or []) if meta else []
        except Exception as exc:  # noqa: BLE001
            logger.warning("packer_log_fetch_failed sig=%s error=%s", sig, exc)
            return []

    def _send_with_lookup_table(self, ixs: List[Instruction], keypairs: List[Keypair], legacy_size: float) -> Signature:
        addresses = lookup_table_candidates(ixs)
        if not addresses:
            raise TransactionSizeExceeded(legacy_size, self.size_limit)
        logger.info("packer_alt_required size=%s addresses=%s", legacy_size, len(addresses))
        table = self._provision_lookup_table(addresses)

        try:
            raw, last_valid = self._compile_versioned(ixs, keypairs, table, addresses)
        except TransactionFailed as exc:
            raise LookupTableLeaked(table, exc) from exc
        except Exception as exc:  # noqa: BLE001
            cause = TransactionFailed(f"cannot build versioned transaction: {exc}")
            raise LookupTableLeaked(table, cause) from exc
        logger.info("packer_versioned_size size=%s limit=%s table=%s", len(raw), self.size_limit, table)
        if len(raw) > self.size_limit:
            raise TransactionSizeExceeded(len(raw), self.size_limit, table)
        try:
            return self._send_and_confirm(raw, last_valid)
        except TransactionFailed as exc:
            raise LookupTableLeaked(table, exc) from exc

    def _compile_versioned(
        self, ixs: List[Instruction], keypairs: List[Keypair], table: Pubkey, addresses: List[Pubkey]
    ) -> Tuple[bytes, int]:
        payer = self.payer.pubkey()
        blockhash, last_valid = self._latest_blockhash()
        message = MessageV0.try_compile(
            payer,
            ixs + [build_deactivate_lookup_table_ix(table, payer)],
            [AddressLookupTableAccount(table, addresses)],
            blockhash,
        )
        return bytes(VersionedTransaction(message, keypairs)), last_valid

    def _provision_lookup_table(self, addresses: List[Pubkey]) -> Pubkey:
        payer = self.payer.pubkey()
        try:
            slot = self.client.get_slot(commitment=Finalized).value
        except (RPCException, SolanaRpcException) as exc:
            raise TransactionFailed(f"cannot fetch slot: {_rpc_detail(exc)}") from exc
        create_ix, table = build_create_lookup_table_ix(payer, payer, slot)
        step = self.alt_batch_size
        batches = [addresses[i : i + step] for i in range(0, len(addresses), step)]

        for index, batch in enumerate(batches):
            extend_ix = build_extend_lookup_table_ix(table, payer, payer, batch)
            ixs = [create_ix, extend_ix] if index == 0 else [extend_ix]
            commitment = Finalized if index == len(batches) - 1 else self.commitment
            try:
                self._send_management(ixs, table, commitment)
            except TransactionFailed as exc:
                if index == 0:
                    raise
                raise LookupTableLeaked(table, exc) from exc
            if index == 0:
                logger.warning(
                    "lookup_table_created table=%s slot=%s; close it with close-alt if this run fails", table, slot
                )
            logger.info("lookup_table_extended table=%s batch=%s/%s count=%s", table, index + 1, len(batches), len(batch))
        return table

    def _send_management(self, ixs: List[Instruction], table: Pubkey, commitment: Commitment) -> Signature:
        blockhash, last_valid = self._latest_blockhash()
        raw = self._sign_legacy(ixs, [self.payer], blockhash)
        if raw is None or len(raw) > self.size_limit:
            raise TransactionSizeExceeded(len(raw) if raw is not None else math.inf, self.size_limit, table)
        return self._send_and_confirm(raw, last_valid, commitment)
