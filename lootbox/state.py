"""Decoding of lootbox state accounts and ticket records.

Three state layouts have been deployed. The leading version byte selects the
layout; older layouts carry a single price that is exposed as a one-entry
price table so callers see one shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from borsh_construct import CStruct, String, U8, U16, U32, U64, Vec
from construct import Bytes as FixedBytes, ConstructError
from solders.pubkey import Pubkey

from .codec import PublicKey, SignerKey
from .errors import AccountNotFound, MalformedRecord, PriceNotConfigured, UnsupportedVersion

TICKET_PREFIX = b"AGLB"
TICKET_VERSION = 0
LATEST_STATE_VERSION = 4

PriceLayout = CStruct("amount" / U64, "ata" / PublicKey)

StateV2Layout = CStruct(
    "version" / U8,
    "owner" / PublicKey,
    "vault_bump" / U8,
    "total_supply" / U32,
    "max_supply" / U32,
    "name" / String,
    "signer" / SignerKey,
    "price" / U64,
    "base_url" / String,
    "payment_ata" / PublicKey,
    "first_index" / U32,
)

StateV3Layout = CStruct(
    "version" / U8,
    "owner" / PublicKey,
    "vault_bump" / U8,
    "total_supply" / U32,
    "max_supply" / U32,
    "name" / String,
    "signer" / SignerKey,
    "price" / U64,
    "base_url" / String,
    "payment_ata" / PublicKey,
    "withdraw_counter" / U32,
)

StateV4Layout = CStruct(
    "version" / U8,
    "lootbox_id" / U16,
    "owner" / PublicKey,
    "vault_bump" / U8,
    "total_supply" / U32,
    "max_supply" / U32,
    "begin_ts" / U32,
    "end_ts" / U32,
    "name" / String,
    "signer" / SignerKey,
    "prices" / Vec(PriceLayout),
    "base_url" / String,
    "withdraw_counter" / U32,
)

STATE_LAYOUTS = {2: StateV2Layout, 3: StateV3Layout, 4: StateV4Layout}

TicketLayout = CStruct(
    "prefix" / FixedBytes(4),
    "version" / U8,
    "owner" / PublicKey,
    "lootbox_id" / U16,
    "issue_index" / U32,
    "external_id" / U32,
)


@dataclass(frozen=True)
class Price:
    amount: int
    ata: Pubkey


@dataclass
class LootboxState:
    version: int
    owner: Pubkey
    vault_bump: int
    total_supply: int
    max_supply: int
    name: str
    signer: bytes
    prices: List[Price]
    base_url: str
    lootbox_id: Optional[int] = None
    begin_ts: Optional[int] = None
    end_ts: Optional[int] = None
    withdraw_counter: Optional[int] = None
    first_index: Optional[int] = None

    def find_price(self, payment_ata: Pubkey) -> int:
        for price in self.prices:
            if price.ata == payment_ata:
                return price.amount
        raise PriceNotConfigured(payment_ata)

    def to_dict(self) -> Dict[str, object]:
        return {
            "version": self.version,
            "lootbox_id": self.lootbox_id,
            "owner": str(self.owner),
            "vault_bump": self.vault_bump,
            "total_supply": self.total_supply,
            "max_supply": self.max_supply,
            "begin_ts": self.begin_ts,
            "end_ts": self.end_ts,
            "name": self.name,
            "signer": self.signer.hex(),
            "prices": [{"amount": p.amount, "ata": str(p.ata)} for p in self.prices],
            "base_url": self.base_url,
            "withdraw_counter": self.withdraw_counter,
            "first_index": self.first_index,
        }


@dataclass(frozen=True)
class Ticket:
    owner: Pubkey
    lootbox_id: int
    issue_index: int
    external_id: int
    version: int = TICKET_VERSION
    prefix: bytes = field(default=TICKET_PREFIX, repr=False)


def load_state(data: Optional[bytes], address: object = None) -> LootboxState:
    if not data:
        raise AccountNotFound(address)
    version = data[0]
    layout = STATE_LAYOUTS.get(version)
    if layout is None:
        raise UnsupportedVersion(version)
    try:
        parsed = layout.parse(bytes(data))
    except (ConstructError, UnicodeError) as exc:
        raise MalformedRecord(f"state v{version} is truncated or corrupt: {exc}") from exc

    common = dict(
        version=version,
        owner=parsed.owner,
        vault_bump=parsed.vault_bump,
        total_supply=parsed.total_supply,
        max_supply=parsed.max_supply,
        name=parsed.name,
        signer=bytes(parsed.signer),
        base_url=parsed.base_url,
    )
    if version == 4:
        return LootboxState(
            prices=[Price(amount=p.amount, ata=p.ata) for p in parsed.prices],
            lootbox_id=parsed.lootbox_id,
            begin_ts=parsed.begin_ts,
            end_ts=parsed.end_ts,
            withdraw_counter=parsed.withdraw_counter,
            **common,
        )
    prices = [Price(amount=parsed.price, ata=parsed.payment_ata)]
    if version == 3:
        return LootboxState(prices=prices, withdraw_counter=parsed.withdraw_counter, **common)
    return LootboxState(prices=prices, first_index=parsed.first_index, **common)


def encode_state(state: LootboxState) -> bytes:
    """Serialize ``state`` with the layout of ``state.version``."""
    layout = STATE_LAYOUTS.get(state.version)
    if layout is None:
        raise UnsupportedVersion(state.version)
    values = {
        "version": state.version,
        "owner": state.owner,
        "vault_bump": state.vault_bump,
        "total_supply": state.total_supply,
        "max_supply": state.max_supply,
        "name": state.name,
        "signer": state.signer,
        "base_url": state.base_url,
    }
    if state.version == 4:
        values.update(
            lootbox_id=state.lootbox_id,
            begin_ts=state.begin_ts,
            end_ts=state.end_ts,
            prices=[{"amount": p.amount, "ata": p.ata} for p in state.prices],
            withdraw_counter=state.withdraw_counter,
        )
    else:
        if len(state.prices) != 1:
            raise MalformedRecord(f"state v{state.version} holds exactly one price, got {len(state.prices)}")
        values.update(price=state.prices[0].amount, payment_ata=state.prices[0].ata)
        if state.version == 3:
            values["withdraw_counter"] = state.withdraw_counter
        else:
            values["first_index"] = state.first_index
    try:
        return layout.build(values)
    except (ConstructError, TypeError, ValueError) as exc:
        raise MalformedRecord(f"cannot encode state v{state.version}: {exc}") from exc


def load_ticket(data: Optional[bytes], address: object = None) -> Ticket:
    if not data:
        raise AccountNotFound(address)
    try:
        parsed = TicketLayout.parse(bytes(data))
    except ConstructError as exc:
        raise MalformedRecord(f"ticket record is truncated: {exc}") from exc
    if parsed.prefix != TICKET_PREFIX:
        raise MalformedRecord(f"bad ticket prefix {parsed.prefix!r}")
    if parsed.version != TICKET_VERSION:
        raise UnsupportedVersion(parsed.version, kind="ticket")
    return Ticket(
        owner=parsed.owner,
        lootbox_id=parsed.lootbox_id,
        issue_index=parsed.issue_index,
        external_id=parsed.external_id,
    )


def encode_ticket(ticket: Ticket) -> bytes:
    return TicketLayout.build(
        {
            "prefix": ticket.prefix,
            "version": ticket.version,
            "owner": ticket.owner,
            "lootbox_id": ticket.lootbox_id,
            "issue_index": ticket.issue_index,
            "external_id": ticket.external_id,
        }
    )
