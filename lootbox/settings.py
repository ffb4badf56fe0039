from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from pydantic_settings import BaseSettings
from solders.pubkey import Pubkey

from .errors import ProfileError

MAINNET = "mainnet"
DEVNET = "devnet"
DEVNET_OLD = "devnet-old"

QUICKNODE_ENDPOINT = "https://side-special-sunset.solana-{cluster}.quiknode.pro/{key}"
PUBLIC_ENDPOINTS = {
    "mainnet": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
}


class Settings(BaseSettings):
    profile: str = DEVNET
    rpc_url: Optional[str] = None
    secrets_path: str = ".secrets.json"
    commitment: str = "confirmed"
    rpc_timeout: int = 30
    compute_unit_limit: int = 300_000
    buy_batch_size: int = 20
    alt_batch_size: int = 28
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@dataclass(frozen=True)
class ProfileParams:
    name: str
    cluster: str
    program_id: Pubkey
    usdc_mint: Pubkey
    borg_mint: Pubkey
    xbg_mint: Pubkey
    borgy_mint: Pubkey
    gnet_mint: Optional[Pubkey]
    lootbox_id: int
    signer: Optional[bytes]
    state_versions: tuple
    # state seeds without the lootbox id and a bump-only migrate payload
    legacy_abi: bool = False

    def endpoint(self, quick_node_key: Optional[str] = None, override: Optional[str] = None) -> str:
        if override:
            return override
        if quick_node_key:
            return QUICKNODE_ENDPOINT.format(cluster=self.cluster, key=quick_node_key)
        return PUBLIC_ENDPOINTS[self.cluster]

    def mint_aliases(self) -> Dict[str, Pubkey]:
        aliases = {
            "usdc": self.usdc_mint,
            "borg": self.borg_mint,
            "xbg": self.xbg_mint,
            "borgy": self.borgy_mint,
        }
        if self.gnet_mint is not None:
            aliases["gnet"] = self.gnet_mint
        return aliases

    def resolve_mint(self, value: str) -> Pubkey:
        """Accept a mint alias such as ``usdc`` or a base58 address."""
        alias = self.mint_aliases().get(value.lower())
        if alias is not None:
            return alias
        try:
            return Pubkey.from_string(value)
        except Exception as exc:  # noqa: BLE001
            raise ValueError(f"{value} is neither a known mint alias nor a valid pubkey: {exc}") from exc


_DEVNET_MINTS = dict(
    usdc_mint=Pubkey.from_string("Bf8SC6jEMH2sZ5wTK8nKrc9MeKUDwjNNGfC1fFFKEckF"),
    borg_mint=Pubkey.from_string("CVGgUEBWVbKNipC7o37txsDeAyuqG1CMJYiEouReYPg3"),
    xbg_mint=Pubkey.from_string("G3bE5wX4fH2sFpjUbECxe62qMEK1V7kY6Ab9m2CG3mij"),
    borgy_mint=Pubkey.from_string("A3CmjFeRJ3864nJWcvy8J22vdUSLx3zRLifvCpqATLFz"),
    gnet_mint=Pubkey.from_string("3S3XeNPwrETmAQD2kpkrGwxRqwAn7jLidzdRXX1aCepg"),
)
_DEVNET_SIGNER = bytes.fromhex("033e2222644f8d418e9b51622ba74eb23313c7cabbba68d45d767ae321bd34b5eb")

PROFILES: Dict[str, ProfileParams] = {
    MAINNET: ProfileParams(
        name=MAINNET,
        cluster="mainnet",
        program_id=Pubkey.from_string("9eMe9ZfiBf8mtcB6RqP45xR4HRoYBRmfcR98EuxXba3X"),
        usdc_mint=Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"),
        borg_mint=Pubkey.from_string("3dQTr7ror2QPKQ3GbBCokJUmjErGg8kTJzdnYjNfvi3Z"),
        xbg_mint=Pubkey.from_string("XBGdqJ9P175hCC1LangCEyXWNeCPHaKWA17tymz2PrY"),
        borgy_mint=Pubkey.from_string("BorGY4ub2Fz4RLboGxnuxWdZts7EKhUTB624AFmfCgX"),
        gnet_mint=None,
        lootbox_id=1,
        # not yet provisioned for mainnet
        signer=None,
        state_versions=(4,),
    ),
    DEVNET: ProfileParams(
        name=DEVNET,
        cluster="devnet",
        program_id=Pubkey.from_string("AGLuuavR5JWtEgvjLUZiw6XswhjVm79HX59aGNipa8Fb"),
        lootbox_id=6,
        signer=_DEVNET_SIGNER,
        state_versions=(4,),
        **_DEVNET_MINTS,
    ),
    DEVNET_OLD: ProfileParams(
        name=DEVNET_OLD,
        cluster="devnet",
        program_id=Pubkey.from_string("HDcKzEZqr13G1rbC24pCN1CKSxKjf7JknC5a8ytX5hoN"),
        lootbox_id=4,
        signer=_DEVNET_SIGNER,
        state_versions=(2, 3),
        legacy_abi=True,
        **_DEVNET_MINTS,
    ),
}


def resolve_profile(name: str) -> ProfileParams:
    """Exact profile names win; otherwise ``d...`` means devnet and ``m...`` mainnet."""
    key = (name or "").strip().lower()
    if key in PROFILES:
        return PROFILES[key]
    if key.startswith("d"):
        return PROFILES[DEVNET]
    if key.startswith("m"):
        return PROFILES[MAINNET]
    raise ProfileError(f"unknown profile {name!r}; expected one of {', '.join(PROFILES)}")
