import pytest
from solders.pubkey import Pubkey

from lootbox.errors import AccountNotFound, MalformedRecord, PriceNotConfigured, UnsupportedVersion
from lootbox.state import Ticket, encode_state, encode_ticket, load_state, load_ticket

from .conftest import make_state


@pytest.mark.parametrize("version", [2, 3, 4])
def test_state_round_trip_per_version(version):
    state = make_state(Pubkey.new_unique(), [(Pubkey.new_unique(), 5_000_000)], version=version)
    assert load_state(encode_state(state)) == state


def test_v4_keeps_every_price():
    prices = [(Pubkey.new_unique(), 5_000_000), (Pubkey.new_unique(), 10_000_000)]
    state = load_state(encode_state(make_state(Pubkey.new_unique(), prices)))
    assert [(p.ata, p.amount) for p in state.prices] == prices
    assert state.lootbox_id == 6


def test_find_price_picks_matching_account():
    first, second = Pubkey.new_unique(), Pubkey.new_unique()
    state = make_state(Pubkey.new_unique(), [(first, 5_000_000), (second, 10_000_000)])
    assert state.find_price(second) == 10_000_000
    with pytest.raises(PriceNotConfigured):
        state.find_price(Pubkey.new_unique())


def test_old_layouts_expose_single_price():
    account = Pubkey.new_unique()
    state = load_state(encode_state(make_state(Pubkey.new_unique(), [(account, 42)], version=3)))
    assert state.find_price(account) == 42
    assert state.withdraw_counter == 3
    assert state.lootbox_id is None


def test_v2_carries_first_index():
    state = load_state(encode_state(make_state(Pubkey.new_unique(), [(Pubkey.new_unique(), 1)], version=2)))
    assert state.first_index == 7
    assert state.withdraw_counter is None


def test_old_layouts_reject_price_tables():
    state = make_state(Pubkey.new_unique(), [(Pubkey.new_unique(), 1), (Pubkey.new_unique(), 2)], version=3)
    with pytest.raises(MalformedRecord):
        encode_state(state)


def test_missing_account_data():
    with pytest.raises(AccountNotFound):
        load_state(None)
    with pytest.raises(AccountNotFound):
        load_state(b"")


@pytest.mark.parametrize("version", [0, 1, 5, 200])
def test_unknown_version(version):
    with pytest.raises(UnsupportedVersion):
        load_state(bytes([version]) + bytes(200))


def test_truncated_state():
    data = encode_state(make_state(Pubkey.new_unique(), [(Pubkey.new_unique(), 1)]))
    with pytest.raises(MalformedRecord):
        load_state(data[:40])


def test_over_allocated_account_decodes():
    state = make_state(Pubkey.new_unique(), [(Pubkey.new_unique(), 1)])
    assert load_state(encode_state(state) + bytes(64)) == state


def test_ticket_record():
    ticket = Ticket(owner=Pubkey.new_unique(), lootbox_id=6, issue_index=11, external_id=0)
    data = encode_ticket(ticket)
    assert data[:4] == b"AGLB"
    assert len(data) == 4 + 1 + 32 + 2 + 4 + 4
    assert load_ticket(data) == ticket


def test_ticket_prefix_and_version_checked():
    data = bytearray(encode_ticket(Ticket(owner=Pubkey.new_unique(), lootbox_id=1, issue_index=0, external_id=0)))
    with pytest.raises(MalformedRecord):
        load_ticket(b"XXXX" + bytes(data[4:]))
    data[4] = 1
    with pytest.raises(UnsupportedVersion):
        load_ticket(bytes(data))
