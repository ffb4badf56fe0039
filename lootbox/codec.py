"""Wire encoding for lootbox program instructions.

Every instruction is a single opcode byte followed by a Borsh body. Integers
are little endian, strings and vectors carry a u32 length prefix, fixed arrays
carry none. The opcode table is the program ABI and must not be reordered.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Dict, List, Type, Union

from borsh_construct import CStruct, String, U8, U16, U32, U64, Vec
from construct import Adapter, Bytes as FixedBytes, ConstructError
from solders.pubkey import Pubkey

from .errors import InvalidSignatureFormat, MalformedRecord


class _PubkeyAdapter(Adapter):
    def _decode(self, obj, context, path):
        return Pubkey(obj)

    def _encode(self, obj, context, path):
        return bytes(obj)


PublicKey = _PubkeyAdapter(FixedBytes(32))
SignerKey = FixedBytes(33)

BUY = 1
WITHDRAW = 2
OBTAIN_TICKET = 3
UPDATE_STATE = 4
MIGRATE = 253
ADMIN_WITHDRAW = 254
INITIALIZE = 255

UPDATE_MAX_SUPPLY = 1
UPDATE_BEGIN_TS = 2
UPDATE_END_TS = 4
UPDATE_PRICE = 8

SIGNATURE_HEX_LEN = 130
_HEX_RE = re.compile(r"[0-9a-fA-F]+")

SignatureLayout = CStruct("rec_id" / U8, "rs" / FixedBytes(64))


@dataclass(frozen=True)
class RecoverableSignature:
    rec_id: int
    rs: bytes

    def to_hex(self) -> str:
        return "0x" + bytes([self.rec_id]).hex() + self.rs.hex()


def parse_signature(text: str) -> RecoverableSignature:
    """Parse a ``0x`` prefixed 65-byte recoverable secp256k1 signature.

    The first byte is the recovery id. Ethereum style ids (27, 28) are
    normalized to 0 and 1.
    """
    if not isinstance(text, str) or not text.startswith("0x"):
        raise InvalidSignatureFormat("signature must be a 0x prefixed hex string")
    body = text[2:]
    if len(body) != SIGNATURE_HEX_LEN:
        raise InvalidSignatureFormat(
            f"signature must have {SIGNATURE_HEX_LEN} hex characters, got {len(body)}"
        )
    if not _HEX_RE.fullmatch(body):
        raise InvalidSignatureFormat("signature contains non-hex characters")
    raw = bytes.fromhex(body)
    rec_id = raw[0]
    if rec_id >= 27:
        rec_id -= 27
    if rec_id > 3:
        raise InvalidSignatureFormat(f"recovery id {raw[0]} is out of range")
    return RecoverableSignature(rec_id=rec_id, rs=raw[1:])


@dataclass(frozen=True)
class Buy:
    OPCODE = BUY
    LAYOUT = CStruct(
        "lootbox_id" / U16,
        "ticket_seed" / U32,
        "ticket_bumps" / Vec(U8),
    )

    lootbox_id: int
    ticket_seed: int
    ticket_bumps: List[int]


@dataclass(frozen=True)
class Withdraw:
    OPCODE = WITHDRAW
    LAYOUT = CStruct(
        "expire_at" / U32,
        "signature" / SignatureLayout,
        "tickets" / U8,
        "amounts" / Vec(U64),
    )

    expire_at: int
    signature: RecoverableSignature
    tickets: int
    amounts: List[int]


@dataclass(frozen=True)
class ObtainTicket:
    OPCODE = OBTAIN_TICKET
    LAYOUT = CStruct(
        "lootbox_id" / U16,
        "ticket_bump" / U8,
        "ticket_id" / U32,
        "expire_at" / U32,
        "signature" / SignatureLayout,
    )

    lootbox_id: int
    ticket_bump: int
    ticket_id: int
    expire_at: int
    signature: RecoverableSignature


@dataclass(frozen=True)
class UpdateState:
    OPCODE = UPDATE_STATE
    LAYOUT = CStruct(
        "lootbox_id" / U16,
        "state_bump" / U8,
        "flags" / U8,
        "max_supply" / U32,
        "begin_ts" / U32,
        "end_ts" / U32,
        "price_ata" / PublicKey,
        "price_amount" / U64,
    )

    lootbox_id: int
    state_bump: int
    flags: int = 0
    max_supply: int = 0
    begin_ts: int = 0
    end_ts: int = 0
    price_ata: Pubkey = field(default_factory=Pubkey.default)
    price_amount: int = 0


@dataclass(frozen=True)
class Migrate:
    OPCODE = MIGRATE
    LAYOUT = CStruct("lootbox_id" / U16, "state_bump" / U8)

    lootbox_id: int
    state_bump: int


@dataclass(frozen=True)
class LegacyMigrate:
    """Migrate as accepted by deployments that key state by owner only."""

    OPCODE = MIGRATE
    LAYOUT = CStruct("state_bump" / U8)

    state_bump: int


@dataclass(frozen=True)
class AdminWithdraw:
    OPCODE = ADMIN_WITHDRAW
    LAYOUT = CStruct("lootbox_id" / U16, "amount" / U64)

    lootbox_id: int
    amount: int


@dataclass(frozen=True)
class Initialize:
    OPCODE = INITIALIZE
    LAYOUT = CStruct(
        "lootbox_id" / U16,
        "vault_bump" / U8,
        "state_bump" / U8,
        "max_supply" / U32,
        "begin_ts" / U32,
        "end_ts" / U32,
        "signer" / SignerKey,
        "name" / String,
        "prices" / Vec(U64),
        "base_url" / String,
    )

    lootbox_id: int
    vault_bump: int
    state_bump: int
    max_supply: int
    begin_ts: int
    end_ts: int
    signer: bytes
    name: str
    prices: List[int]
    base_url: str


InstructionRecord = Union[Buy, Withdraw, ObtainTicket, UpdateState, Migrate, LegacyMigrate, AdminWithdraw, Initialize]

RECORD_TYPES: Dict[int, Type] = {
    cls.OPCODE: cls
    for cls in (Buy, Withdraw, ObtainTicket, UpdateState, Migrate, AdminWithdraw, Initialize)
}
LEGACY_RECORD_TYPES: Dict[int, Type] = {**RECORD_TYPES, MIGRATE: LegacyMigrate}


def _to_wire(record) -> dict:
    values = {}
    for f in fields(record):
        value = getattr(record, f.name)
        if isinstance(value, RecoverableSignature):
            value = {"rec_id": value.rec_id, "rs": value.rs}
        values[f.name] = value
    return values


def _from_wire(cls, parsed):
    values = {}
    for f in fields(cls):
        value = parsed[f.name]
        if f.name == "signature":
            value = RecoverableSignature(rec_id=value.rec_id, rs=bytes(value.rs))
        elif isinstance(value, list):
            value = list(value)
        values[f.name] = value
    return cls(**values)


def encode_instruction(record: InstructionRecord) -> bytes:
    try:
        body = record.LAYOUT.build(_to_wire(record))
    except (ConstructError, TypeError, ValueError) as exc:
        raise MalformedRecord(f"cannot encode {type(record).__name__}: {exc}") from exc
    return bytes([record.OPCODE]) + body


def decode_instruction(data: bytes, legacy_abi: bool = False) -> InstructionRecord:
    """Decode instruction data back into its record.

    Bytes past the end of the record are ignored. ``legacy_abi`` selects the
    payloads of deployments that predate per-lootbox state accounts.
    """
    if not data:
        raise MalformedRecord("instruction data is empty")
    cls = (LEGACY_RECORD_TYPES if legacy_abi else RECORD_TYPES).get(data[0])
    if cls is None:
        raise MalformedRecord(f"unknown opcode {data[0]}")
    try:
        parsed = cls.LAYOUT.parse(bytes(data[1:]))
    except (ConstructError, UnicodeError) as exc:
        raise MalformedRecord(f"cannot decode {cls.__name__}: {exc}") from exc
    return _from_wire(cls, parsed)
