import base64
from types import SimpleNamespace

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction

from lootbox import cli
from lootbox.cli import build_parser, main
from lootbox.settings import PROFILES, Settings
from lootbox.tx_builder import build_migrate_ix


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PROFILE", "devnet")


def test_no_command_prints_usage(capsys):
    assert main([]) == 0
    assert "usage" in capsys.readouterr().out


def test_wrong_argument_count_exits_with_usage():
    with pytest.raises(SystemExit) as info:
        main(["buy"])
    assert info.value.code == 2


def test_init_parses_price_pairs():
    args = build_parser().parse_args(["init", "6", "Box", "100", "https://x/", "usdc:5000000", "borg:7"])
    assert args.prices == [("usdc", 5_000_000), ("borg", 7)]


def test_bad_price_pair_is_usage_error():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["init", "6", "Box", "100", "https://x/", "usdc"])


def test_new_key_prints_address(capsys):
    assert main(["new-key"]) == 0
    out = capsys.readouterr().out
    assert "New address" in out
    assert "Private key b58" in out


def test_unpack_tx(capsys):
    admin = Keypair()
    program = PROFILES["devnet"].program_id
    tx = Transaction.new_signed_with_payer([build_migrate_ix(program, admin.pubkey(), 6)], admin.pubkey(), [admin], Hash.default())
    assert main(["unpack-tx", base64.b64encode(bytes(tx)).decode()]) == 0
    assert "decoded Migrate(lootbox_id=6" in capsys.readouterr().out


def test_missing_secrets_exits_with_error():
    assert main(["get-state"]) == 1


def test_bad_signature_exits_with_error(tmp_path):
    assert main(["obtain-ticket", "1", "2", "0xnope"]) == 1


def test_init_begin_defaults_to_run_time(monkeypatch):
    args = build_parser().parse_args(["init", "6", "Box", "100", "https://x/", "usdc:5"])
    assert args.begin is None

    calls = []
    monkeypatch.setattr(cli.Environment, "from_settings", lambda settings: SimpleNamespace(profile=PROFILES["devnet"]))
    monkeypatch.setattr(cli.commands, "initialize", lambda env, *params, **kw: calls.append(params) or "sig")
    monkeypatch.setattr(cli.time, "time", lambda: 1_800_000_000.5)
    assert cli.cmd_init(args, Settings()) == 0
    assert calls[0][4] == 1_800_000_000
