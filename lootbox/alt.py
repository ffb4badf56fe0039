"""Address lookup table program: instruction encoders and account decoding.

The program uses bincode: a u32 instruction tag, u64 vector lengths.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from borsh_construct import CStruct, Option, U8, U32, U64
from construct import ConstructError
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .codec import PublicKey
from .errors import AccountNotFound, MalformedRecord
from .pda import SYS_PROGRAM_ID

ALT_PROGRAM_ID = Pubkey.from_string("AddressLookupTab1e1111111111111111111111111")
MAX_ADDRESSES_PER_EXTEND = 28
LOOKUP_TABLE_META_SIZE = 56
AUTHORITY_OFFSET = 22
DEACTIVATION_COOLDOWN_SLOTS = 512
U64_MAX = 2**64 - 1

LookupTableMetaLayout = CStruct(
    "type_tag" / U32,
    "deactivation_slot" / U64,
    "last_extended_slot" / U64,
    "last_extended_slot_start_index" / U8,
    "authority" / Option(PublicKey),
)


@dataclass
class LookupTable:
    address: Optional[Pubkey]
    authority: Optional[Pubkey]
    deactivation_slot: int
    last_extended_slot: int
    addresses: List[Pubkey]

    @property
    def is_active(self) -> bool:
        return self.deactivation_slot == U64_MAX

    def can_close(self, current_slot: int) -> bool:
        return not self.is_active and current_slot > self.deactivation_slot + DEACTIVATION_COOLDOWN_SLOTS


def derive_lookup_table_address(authority: Pubkey, recent_slot: int) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [bytes(authority), int(recent_slot).to_bytes(8, "little")], ALT_PROGRAM_ID
    )


def _tag(value: int) -> bytes:
    return value.to_bytes(4, "little")


def build_create_lookup_table_ix(authority: Pubkey, payer: Pubkey, recent_slot: int) -> Tuple[Instruction, Pubkey]:
    table, bump = derive_lookup_table_address(authority, recent_slot)
    data = _tag(0) + int(recent_slot).to_bytes(8, "little") + bytes([bump])
    accounts = [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=ALT_PROGRAM_ID, data=data, accounts=accounts), table


def build_extend_lookup_table_ix(
    table: Pubkey, authority: Pubkey, payer: Pubkey, addresses: Sequence[Pubkey]
) -> Instruction:
    if not addresses:
        raise ValueError("extend requires at least one address")
    data = _tag(2) + len(addresses).to_bytes(8, "little") + b"".join(bytes(a) for a in addresses)
    accounts = [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=ALT_PROGRAM_ID, data=data, accounts=accounts)


def build_deactivate_lookup_table_ix(table: Pubkey, authority: Pubkey) -> Instruction:
    accounts = [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    return Instruction(program_id=ALT_PROGRAM_ID, data=_tag(3), accounts=accounts)


def build_close_lookup_table_ix(table: Pubkey, authority: Pubkey, recipient: Pubkey) -> Instruction:
    accounts = [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=recipient, is_signer=False, is_writable=True),
    ]
    return Instruction(program_id=ALT_PROGRAM_ID, data=_tag(4), accounts=accounts)


def decode_lookup_table(data: Optional[bytes], address: Optional[Pubkey] = None) -> LookupTable:
    if not data:
        raise AccountNotFound(address)
    data = bytes(data)
    if len(data) < LOOKUP_TABLE_META_SIZE or (len(data) - LOOKUP_TABLE_META_SIZE) % 32:
        raise MalformedRecord(f"lookup table account has invalid length {len(data)}")
    try:
        meta = LookupTableMetaLayout.parse(data[:LOOKUP_TABLE_META_SIZE])
    except ConstructError as exc:
        raise MalformedRecord(f"cannot decode lookup table: {exc}") from exc
    addresses = [
        Pubkey(data[offset : offset + 32]) for offset in range(LOOKUP_TABLE_META_SIZE, len(data), 32)
    ]
    return LookupTable(
        address=address,
        authority=meta.authority,
        deactivation_slot=meta.deactivation_slot,
        last_extended_slot=meta.last_extended_slot,
        addresses=addresses,
    )
