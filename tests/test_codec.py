import pytest
from solders.pubkey import Pubkey

from lootbox.codec import (
    AdminWithdraw,
    Buy,
    Initialize,
    LegacyMigrate,
    Migrate,
    ObtainTicket,
    RecoverableSignature,
    UpdateState,
    Withdraw,
    decode_instruction,
    encode_instruction,
    parse_signature,
)
from lootbox.errors import InvalidSignatureFormat, MalformedRecord

SIG = RecoverableSignature(rec_id=1, rs=bytes(range(64)))


def test_buy_wire_layout():
    data = encode_instruction(Buy(lootbox_id=7, ticket_seed=0x01020304, ticket_bumps=[255, 254]))
    assert data == (
        bytes([1])
        + (7).to_bytes(2, "little")
        + (0x01020304).to_bytes(4, "little")
        + (2).to_bytes(4, "little")
        + bytes([255, 254])
    )


def test_initialize_uses_top_opcode_and_prefixed_strings():
    record = Initialize(
        lootbox_id=1,
        vault_bump=250,
        state_bump=251,
        max_supply=100,
        begin_ts=10,
        end_ts=20,
        signer=bytes(33),
        name="ab",
        prices=[5],
        base_url="u",
    )
    data = encode_instruction(record)
    assert data[0] == 255
    name_offset = 1 + 2 + 1 + 1 + 4 + 4 + 4 + 33
    assert data[name_offset : name_offset + 6] == (2).to_bytes(4, "little") + b"ab"


@pytest.mark.parametrize(
    "record",
    [
        Buy(lootbox_id=6, ticket_seed=123, ticket_bumps=list(range(20))),
        Withdraw(expire_at=1_700_000_000, signature=SIG, tickets=2, amounts=[1, 2**64 - 1]),
        ObtainTicket(lootbox_id=6, ticket_bump=253, ticket_id=99, expire_at=5, signature=SIG),
        UpdateState(lootbox_id=6, state_bump=1, flags=9, max_supply=10, price_ata=Pubkey.new_unique(), price_amount=7),
        Migrate(lootbox_id=3, state_bump=250),
        AdminWithdraw(lootbox_id=6, amount=10**12),
        Initialize(
            lootbox_id=6,
            vault_bump=1,
            state_bump=2,
            max_supply=3,
            begin_ts=4,
            end_ts=5,
            signer=bytes([3]) + bytes(32),
            name="Box ñ",
            prices=[10_000_000, 5_000_000],
            base_url="https://example.invalid/",
        ),
    ],
)
def test_decode_recovers_encoded_record(record):
    assert decode_instruction(encode_instruction(record)) == record


def test_legacy_migrate_carries_only_the_bump():
    data = encode_instruction(LegacyMigrate(state_bump=251))
    assert data == bytes([253, 251])
    assert decode_instruction(data, legacy_abi=True) == LegacyMigrate(state_bump=251)
    with pytest.raises(MalformedRecord):
        decode_instruction(data)


def test_truncated_buffer_is_malformed():
    data = encode_instruction(Withdraw(expire_at=1, signature=SIG, tickets=1, amounts=[1, 2]))
    with pytest.raises(MalformedRecord):
        decode_instruction(data[:-3])


def test_unknown_opcode_is_malformed():
    with pytest.raises(MalformedRecord):
        decode_instruction(bytes([9, 0, 0]))


def test_empty_data_is_malformed():
    with pytest.raises(MalformedRecord):
        decode_instruction(b"")


def test_out_of_range_values_fail_before_sending():
    with pytest.raises(MalformedRecord):
        encode_instruction(AdminWithdraw(lootbox_id=1, amount=-1))
    with pytest.raises(MalformedRecord):
        encode_instruction(Migrate(lootbox_id=70_000, state_bump=1))


def test_large_amounts_keep_full_precision():
    amount = 2**64 - 2
    decoded = decode_instruction(encode_instruction(AdminWithdraw(lootbox_id=1, amount=amount)))
    assert decoded.amount == amount


def test_parse_signature_normalizes_ethereum_recovery_id():
    sig = parse_signature("0x1b" + "ab" * 64)
    assert sig.rec_id == 0
    assert sig.rs == bytes([0xAB]) * 64


def test_parse_signature_keeps_small_recovery_id():
    assert parse_signature("0x02" + "00" * 64).rec_id == 2


@pytest.mark.parametrize(
    "text",
    [
        "1b" + "ab" * 64,
        "0x" + "a" * 129,
        "0x" + "a" * 131,
        "0x" + "zz" * 65,
        "0x" + " a" * 65,
        "0x05" + "00" * 64,
    ],
)
def test_parse_signature_rejects_bad_input(text):
    with pytest.raises(InvalidSignatureFormat):
        parse_signature(text)


def test_signature_hex_round_trip():
    text = "0x01" + "cd" * 64
    assert parse_signature(text).to_hex() == text
