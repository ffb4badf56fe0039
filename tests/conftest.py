from types import SimpleNamespace

import pytest
from solana.exceptions import SolanaRpcException
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from lootbox.commands import Environment
from lootbox.keys import SigningContext
from lootbox.pda import ata, state_pda, vault_pda
from lootbox.settings import PROFILES, Settings
from lootbox.state import LootboxState, Price, encode_state


class FakeClient:
    """In-memory stand-in for ``solana.rpc.api.Client``.

    Every raw transaction is decoded and kept in ``sent``.
    """

    def __init__(self, accounts=None, slot=5_000):
        self.accounts = dict(accounts or {})
        self.slot = slot
        self.sent = []
        self.raw = []
        self.confirmations = []
        self.fail_confirm_at = None
        self.send_error = None
        self.logs = ["Program log: failure"]
        self.slot_calls = 0
        self.blockhash_calls = 0
        self.blockhash_error_at = None

    def get_latest_blockhash(self, commitment=None):
        self.blockhash_calls += 1
        if self.blockhash_error_at is not None and self.blockhash_calls - 1 == self.blockhash_error_at:
            raise transport_error()
        return SimpleNamespace(value=SimpleNamespace(blockhash=Hash.new_unique(), last_valid_block_height=1_000))

    def get_slot(self, commitment=None):
        self.slot_calls += 1
        return SimpleNamespace(value=self.slot)

    def send_raw_transaction(self, raw, opts=None):
        if self.send_error is not None:
            raise self.send_error
        tx = VersionedTransaction.from_bytes(raw)
        self.sent.append(tx)
        self.raw.append(raw)
        return SimpleNamespace(value=tx.signatures[0])

    def confirm_transaction(self, sig, commitment=None, last_valid_block_height=None):
        self.confirmations.append((sig, commitment))
        err = None
        if self.fail_confirm_at is not None and len(self.confirmations) - 1 == self.fail_confirm_at:
            err = "InstructionError"
        return SimpleNamespace(value=[SimpleNamespace(err=err)])

    def get_transaction(self, sig, commitment=None, max_supported_transaction_version=None):
        meta = SimpleNamespace(log_messages=list(self.logs))
        return SimpleNamespace(value=SimpleNamespace(transaction=SimpleNamespace(meta=meta)))

    def get_account_info(self, address, commitment=None):
        data = self.accounts.get(address)
        if data is None:
            return SimpleNamespace(value=None)
        return SimpleNamespace(value=SimpleNamespace(data=data, lamports=10_000_000))

    def get_minimum_balance_for_rent_exemption(self, size, commitment=None):
        return SimpleNamespace(value=1_461_600)


def transport_error():
    """What solana-py raises when the HTTP request itself fails."""
    return SolanaRpcException(ConnectionError("connection reset"), None, None, SimpleNamespace())


def program_keys(tx):
    keys = list(tx.message.account_keys)
    return [keys[ix.program_id_index] for ix in tx.message.instructions]


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def signing():
    return SigningContext(payer=Keypair(), admin=Keypair())


@pytest.fixture
def profile():
    return PROFILES["devnet"]


@pytest.fixture
def env(fake_client, signing, profile, tmp_path):
    settings = Settings(profile="devnet", secrets_path=str(tmp_path / ".secrets.json"))
    return Environment(client=fake_client, profile=profile, signing=signing, settings=settings)


def make_state(owner: Pubkey, prices, lootbox_id: int = 6, version: int = 4) -> LootboxState:
    return LootboxState(
        version=version,
        owner=owner,
        vault_bump=254,
        total_supply=10,
        max_supply=1_000,
        name="Season one",
        signer=bytes([2]) + bytes(range(32)),
        prices=[Price(amount=amount, ata=account) for account, amount in prices],
        base_url="https://example.invalid/meta/",
        lootbox_id=lootbox_id if version == 4 else None,
        begin_ts=0 if version == 4 else None,
        end_ts=0xFFFFFFFF if version == 4 else None,
        withdraw_counter=3 if version >= 3 else None,
        first_index=7 if version == 2 else None,
    )


@pytest.fixture
def funded_state(env):
    """Store a v4 state priced in the profile's USDC mint and return it."""
    vault, _ = vault_pda(env.admin, env.program_id)
    state = make_state(env.admin, [(ata(vault, env.profile.usdc_mint), 5_000_000)])
    address, _ = state_pda(env.admin, env.profile.lootbox_id, env.program_id)
    env.client.accounts[address] = encode_state(state)
    return state
