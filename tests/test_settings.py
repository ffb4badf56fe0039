import pytest
from solders.pubkey import Pubkey

from lootbox.errors import ProfileError
from lootbox.settings import PROFILES, Settings, resolve_profile


@pytest.mark.parametrize(
    "name, expected",
    [("devnet", "devnet"), ("dev", "devnet"), ("devnet-old", "devnet-old"), ("MAINNET", "mainnet"), ("main", "mainnet")],
)
def test_resolve_profile(name, expected):
    assert resolve_profile(name).name == expected


def test_unknown_profile():
    with pytest.raises(ProfileError):
        resolve_profile("testnet")


def test_profile_program_ids_differ():
    assert len({p.program_id for p in PROFILES.values()}) == 3
    assert PROFILES["devnet-old"].state_versions == (2, 3)


def test_endpoint_selection():
    devnet = PROFILES["devnet"]
    assert devnet.endpoint() == "https://api.devnet.solana.com"
    assert devnet.endpoint("abc") == "https://side-special-sunset.solana-devnet.quiknode.pro/abc"
    assert devnet.endpoint("abc", override="http://localhost:8899") == "http://localhost:8899"


def test_resolve_mint_alias_or_address():
    devnet = PROFILES["devnet"]
    assert devnet.resolve_mint("USDC") == devnet.usdc_mint
    other = Pubkey.new_unique()
    assert devnet.resolve_mint(str(other)) == other
    with pytest.raises(ValueError):
        devnet.resolve_mint("not-a-mint")
    with pytest.raises(ValueError):
        PROFILES["mainnet"].resolve_mint("gnet")


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PROFILE", "mainnet")
    monkeypatch.setenv("BUY_BATCH_SIZE", "5")
    settings = Settings()
    assert settings.profile == "mainnet"
    assert settings.buy_batch_size == 5
    assert settings.alt_batch_size == 28


def test_only_legacy_profile_uses_legacy_abi():
    assert [p.name for p in PROFILES.values() if p.legacy_abi] == ["devnet-old"]
