"""Command line entry point: ``lootbox <command> [args]``.

Keys come from the secrets file (``SECRETS_PATH``, default ``.secrets.json``)
and the cluster from ``PROFILE`` (mainnet, devnet or devnet-old).
"""

from __future__ import annotations

import argparse
import code
import json
import logging
import sys
import time
from typing import List, Optional, Tuple

from solana.exceptions import SolanaRpcException
from solders.pubkey import Pubkey

from . import commands
from .codec import parse_signature
from .commands import Environment
from .errors import LootboxError, TransactionFailed
from .keys import vanity_keypair
from .settings import Settings, resolve_profile

logger = logging.getLogger("lootbox")

U32_MAX = 0xFFFFFFFF


def _pubkey(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except Exception as exc:  # noqa: BLE001
        raise argparse.ArgumentTypeError(f"{value} is not a valid pubkey") from exc


def _pair(value: str) -> Tuple[str, int]:
    mint, sep, amount = value.rpartition(":")
    if not sep or not mint:
        raise argparse.ArgumentTypeError(f"expected <mint>:<amount>, got {value}")
    try:
        return mint, int(amount)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"amount in {value} is not an integer") from exc


def _pairs(value: str) -> List[Tuple[str, int]]:
    return [_pair(item) for item in value.split(",") if item]


def _mints(env: Environment, pairs: List[Tuple[str, int]]) -> List[Tuple[Pubkey, int]]:
    return [(env.profile.resolve_mint(mint), amount) for mint, amount in pairs]


def cmd_buy(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    sig = commands.buy(
        env,
        env.profile.resolve_mint(args.mint),
        lootbox_id=args.lootbox_id,
        ticket_seed=args.seed,
        count=args.count,
    )
    print(f"tx hash: {sig}")
    return 0


def cmd_init(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    sig = commands.initialize(
        env,
        args.lootbox_id,
        args.name,
        args.base_url,
        args.max_supply,
        args.begin if args.begin is not None else int(time.time()),
        args.end,
        _mints(env, args.prices),
        signer=bytes.fromhex(args.signer) if args.signer else None,
    )
    print(f"tx hash: {sig}")
    return 0


def cmd_withdraw(args, settings: Settings) -> int:
    signature = parse_signature(args.signature)
    env = Environment.from_settings(settings)
    sig = commands.withdraw(
        env,
        args.expire_at,
        [_pubkey(item) for item in args.tickets.split(",") if item],
        _mints(env, _pairs(args.rewards)),
        signature,
        lootbox_id=args.lootbox,
    )
    print(f"tx hash: {sig}")
    return 0


def cmd_obtain_ticket(args, settings: Settings) -> int:
    signature = parse_signature(args.signature)
    env = Environment.from_settings(settings)
    sig = commands.obtain_ticket(env, args.ticket_id, args.expire_at, signature, lootbox_id=args.lootbox)
    print(f"tx hash: {sig}")
    return 0


def cmd_new_admin(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    new_key, sig = commands.new_admin(env)
    print(f"new admin: {new_key.pubkey()}")
    print(f"tx hash: {sig}")
    return 0


def cmd_migrate(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    print(f"tx hash: {commands.migrate(env, args.lootbox_id)}")
    return 0


def cmd_update_state(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    sig = commands.update_state(
        env, args.lootbox_id, max_supply=args.max_supply, begin_ts=args.begin, end_ts=args.end
    )
    print(f"tx hash: {sig}")
    return 0


def cmd_update_price(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    sig = commands.update_state(env, args.lootbox_id, price=(env.profile.resolve_mint(args.mint), args.amount))
    print(f"tx hash: {sig}")
    return 0


def cmd_admin_withdraw(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    sig = commands.admin_withdraw(
        env, env.profile.resolve_mint(args.mint), args.amount, args.lootbox_id, destination_owner=args.to
    )
    print(f"tx hash: {sig}")
    return 0


def cmd_get_state(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    state = commands.get_state(env, args.lootbox_id)
    print(json.dumps(state.to_dict(), indent=2))
    return 0


def cmd_create_token(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    mint, sig = commands.create_token(env, decimals=args.decimals, supply=args.supply)
    print(f"mint: {mint}")
    print(f"tx hash: {sig}")
    return 0


def cmd_mint_tokens(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    print(f"tx hash: {commands.mint_tokens(env, env.profile.resolve_mint(args.mint), args.amount, args.owner)}")
    return 0


def cmd_transfer(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    print(f"tx hash: {commands.transfer(env, env.profile.resolve_mint(args.mint), args.recipient, args.amount)}")
    return 0


def cmd_create_ata(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    print(f"ata: {commands.create_ata(env, env.profile.resolve_mint(args.mint), args.owner)}")
    return 0


def cmd_mint_nft(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    mint, sig = commands.mint_nft(env, args.owner)
    print(f"mint: {mint}")
    print(f"tx hash: {sig}")
    return 0


def cmd_new_key(args, settings: Settings) -> int:
    kp = vanity_keypair(args.prefix, max_attempts=args.max_attempts)
    print(f'New address: "{kp.pubkey()}"')
    print(f'Private key: "{json.dumps(list(bytes(kp)))}"')
    print(f'Private key b58: "{kp}"')
    return 0


def cmd_list_alt(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    authority = env.signing.admin if args.admin else env.signing.payer
    slot = env.client.get_slot().value
    tables = commands.list_lookup_tables(env, authority.pubkey())
    for table in tables:
        if table.is_active:
            status = "active"
        elif table.can_close(slot):
            status = "closable"
        else:
            status = f"deactivated at {table.deactivation_slot}"
        print(f"{table.address} addresses={len(table.addresses)} {status}")
    print(f"{len(tables)} lookup table(s) owned by {authority.pubkey()}")
    return 0


def cmd_close_alt(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    authority = env.signing.admin if args.admin else env.signing.payer
    action, sig = commands.close_lookup_table(env, args.table, authority)
    print(f"{args.table}: {action}" + (f" (tx hash: {sig})" if sig else ""))
    return 0


def cmd_unpack_tx(args, settings: Settings) -> int:
    profile = resolve_profile(settings.profile)
    for line in commands.unpack_tx(args.transaction, profile.program_id, profile.legacy_abi):
        print(line)
    return 0


def cmd_console(args, settings: Settings) -> int:
    env = Environment.from_settings(settings)
    namespace = {
        "env": env,
        "client": env.client,
        "settings": settings,
        "commands": commands,
        "Pubkey": Pubkey,
    }
    code.interact(banner=f"lootbox console ({env.profile.name}); env, client, commands are loaded", local=namespace)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lootbox", description="Lootbox program client.")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("buy", help="Buy a batch of tickets with the given payment mint.")
    p.add_argument("mint", help="Payment mint address or alias (usdc, borg, xbg, borgy, gnet).")
    p.add_argument("lootbox_id", type=int, nargs="?", default=None)
    p.add_argument("--seed", type=int, default=None, help="Ticket seed (defaults to the current unix time).")
    p.add_argument("--count", type=int, default=None, help="Tickets per batch (defaults to BUY_BATCH_SIZE).")
    p.set_defaults(func=cmd_buy)

    p = sub.add_parser("init", help="Create a lootbox state and vault.")
    p.add_argument("lootbox_id", type=int)
    p.add_argument("name")
    p.add_argument("max_supply", type=int)
    p.add_argument("base_url")
    p.add_argument("prices", type=_pair, nargs="+", help="<mint>:<amount> per accepted payment token.")
    p.add_argument("--begin", type=int, default=None, help="Sale start (defaults to now).")
    p.add_argument("--end", type=int, default=U32_MAX)
    p.add_argument("--signer", default=None, help="Compressed secp256k1 signer key as hex.")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("withdraw", help="Burn tickets and collect signed rewards.")
    p.add_argument("expire_at", type=int)
    p.add_argument("signature", help="0x prefixed 65-byte signature.")
    p.add_argument("tickets", help="Comma separated ticket mints.")
    p.add_argument("rewards", nargs="?", default="", help="Comma separated <mint>:<amount> rewards.")
    p.add_argument("--lootbox", type=int, default=None)
    p.set_defaults(func=cmd_withdraw)

    p = sub.add_parser("obtain-ticket", help="Mint a ticket NFT authorised by the lootbox signer.")
    p.add_argument("ticket_id", type=int)
    p.add_argument("expire_at", type=int)
    p.add_argument("signature")
    p.add_argument("--lootbox", type=int, default=None)
    p.set_defaults(func=cmd_obtain_ticket)

    p = sub.add_parser("new-admin", help="Rotate the admin key and fund the new one.")
    p.set_defaults(func=cmd_new_admin)

    p = sub.add_parser("migrate", help="Upgrade the state account to the latest layout.")
    p.add_argument("lootbox_id", type=int, nargs="?", default=None)
    p.set_defaults(func=cmd_migrate)

    p = sub.add_parser("update-state", help="Change supply or sale window of a lootbox.")
    p.add_argument("lootbox_id", type=int, nargs="?", default=None)
    p.add_argument("--max-supply", type=int, default=None)
    p.add_argument("--begin", type=int, default=None)
    p.add_argument("--end", type=int, default=None)
    p.set_defaults(func=cmd_update_state)

    p = sub.add_parser("update-price", help="Set the ticket price for a payment mint.")
    p.add_argument("mint")
    p.add_argument("amount", type=int)
    p.add_argument("lootbox_id", type=int, nargs="?", default=None)
    p.set_defaults(func=cmd_update_price)

    p = sub.add_parser("admin-withdraw", help="Move tokens out of the vault.")
    p.add_argument("mint")
    p.add_argument("amount", type=int)
    p.add_argument("lootbox_id", type=int, nargs="?", default=None)
    p.add_argument("--to", type=_pubkey, default=None, help="Destination owner (defaults to the admin).")
    p.set_defaults(func=cmd_admin_withdraw)

    p = sub.add_parser("get-state", help="Print the decoded lootbox state.")
    p.add_argument("lootbox_id", type=int, nargs="?", default=None)
    p.set_defaults(func=cmd_get_state)

    p = sub.add_parser("create-token", help="Create a test token and mint a supply to the payer.")
    p.add_argument("--decimals", type=int, default=6)
    p.add_argument("--supply", type=int, default=1_000)
    p.set_defaults(func=cmd_create_token)

    p = sub.add_parser("mint-tokens", help="Mint raw token units.")
    p.add_argument("mint")
    p.add_argument("amount", type=int)
    p.add_argument("owner", type=_pubkey, nargs="?", default=None)
    p.set_defaults(func=cmd_mint_tokens)

    p = sub.add_parser("transfer", help="Transfer raw token units from the payer.")
    p.add_argument("mint")
    p.add_argument("recipient", type=_pubkey)
    p.add_argument("amount", type=int)
    p.set_defaults(func=cmd_transfer)

    p = sub.add_parser("create-ata", help="Create an associated token account.")
    p.add_argument("mint")
    p.add_argument("owner", type=_pubkey, nargs="?", default=None)
    p.set_defaults(func=cmd_create_ata)

    p = sub.add_parser("mint-nft", help="Mint a single non-fungible token.")
    p.add_argument("owner", type=_pubkey, nargs="?", default=None)
    p.set_defaults(func=cmd_mint_nft)

    p = sub.add_parser("new-key", help="Generate a keypair, optionally with a vanity prefix.")
    p.add_argument("prefix", nargs="?", default="")
    p.add_argument("--max-attempts", type=int, default=None)
    p.set_defaults(func=cmd_new_key)

    p = sub.add_parser("list-alt", help="List lookup tables owned by the payer.")
    p.add_argument("--admin", action="store_true", help="List tables owned by the admin instead.")
    p.set_defaults(func=cmd_list_alt)

    p = sub.add_parser("close-alt", help="Deactivate or close a lookup table.")
    p.add_argument("table", type=_pubkey)
    p.add_argument("--admin", action="store_true", help="The table belongs to the admin key.")
    p.set_defaults(func=cmd_close_alt)

    p = sub.add_parser("unpack-tx", help="Decode a base64 transaction.")
    p.add_argument("transaction")
    p.set_defaults(func=cmd_unpack_tx)

    p = sub.add_parser("console", help="Interactive Python console with a loaded environment.")
    p.set_defaults(func=cmd_console)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    settings = Settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    try:
        return args.func(args, settings)
    except TransactionFailed as exc:
        logger.error("command_failed command=%s error=%s", args.command, exc)
        for line in exc.logs:
            logger.error("program_log %s", line)
        return 1
    except (LootboxError, ValueError) as exc:
        logger.error("command_failed command=%s error=%s", args.command, exc)
        return 1
    except SolanaRpcException as exc:
        logger.error("rpc_unreachable command=%s error=%s", args.command, exc.error_msg)
        return 1


if __name__ == "__main__":
    sys.exit(main())
