import pytest
from solders.pubkey import Pubkey

from lootbox.alt import (
    ALT_PROGRAM_ID,
    LOOKUP_TABLE_META_SIZE,
    U64_MAX,
    build_close_lookup_table_ix,
    build_create_lookup_table_ix,
    build_deactivate_lookup_table_ix,
    build_extend_lookup_table_ix,
    decode_lookup_table,
    derive_lookup_table_address,
)
from lootbox.errors import AccountNotFound, MalformedRecord


def _table_bytes(authority, addresses, deactivation_slot=U64_MAX):
    meta = (
        (1).to_bytes(4, "little")
        + deactivation_slot.to_bytes(8, "little")
        + (77).to_bytes(8, "little")
        + bytes([0])
        + bytes([1])
        + bytes(authority)
        + bytes(2)
    )
    assert len(meta) == LOOKUP_TABLE_META_SIZE
    return meta + b"".join(bytes(a) for a in addresses)


def test_create_encodes_slot_and_bump():
    authority = Pubkey.new_unique()
    ix, table = build_create_lookup_table_ix(authority, authority, 12345)
    expected, bump = derive_lookup_table_address(authority, 12345)
    assert table == expected
    assert ix.program_id == ALT_PROGRAM_ID
    assert ix.data == bytes(4) + (12345).to_bytes(8, "little") + bytes([bump])
    assert [m.is_signer for m in ix.accounts] == [False, True, True, False]


def test_extend_uses_u64_length():
    authority = Pubkey.new_unique()
    addresses = [Pubkey.new_unique() for _ in range(3)]
    ix = build_extend_lookup_table_ix(Pubkey.new_unique(), authority, authority, addresses)
    assert ix.data[:4] == (2).to_bytes(4, "little")
    assert ix.data[4:12] == (3).to_bytes(8, "little")
    assert len(ix.data) == 12 + 3 * 32
    with pytest.raises(ValueError):
        build_extend_lookup_table_ix(Pubkey.new_unique(), authority, authority, [])


def test_deactivate_and_close_tags():
    table, authority = Pubkey.new_unique(), Pubkey.new_unique()
    assert build_deactivate_lookup_table_ix(table, authority).data == (3).to_bytes(4, "little")
    close = build_close_lookup_table_ix(table, authority, authority)
    assert close.data == (4).to_bytes(4, "little")
    assert len(close.accounts) == 3


def test_decode_active_table():
    authority = Pubkey.new_unique()
    addresses = [Pubkey.new_unique() for _ in range(5)]
    table = decode_lookup_table(_table_bytes(authority, addresses))
    assert table.authority == authority
    assert table.addresses == addresses
    assert table.is_active
    assert not table.can_close(10**9)


def test_deactivated_table_cools_down():
    table = decode_lookup_table(_table_bytes(Pubkey.new_unique(), [], deactivation_slot=1_000))
    assert not table.is_active
    assert not table.can_close(1_400)
    assert table.can_close(1_513)


def test_decode_rejects_bad_accounts():
    with pytest.raises(AccountNotFound):
        decode_lookup_table(None)
    with pytest.raises(MalformedRecord):
        decode_lookup_table(bytes(40))
    with pytest.raises(MalformedRecord):
        decode_lookup_table(_table_bytes(Pubkey.new_unique(), []) + bytes(5))
