from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from solana.rpc.api import Client
from solana.rpc.types import MemcmpOpts
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import VersionedTransaction
from spl.token.constants import MINT_LEN

from .alt import (
    ALT_PROGRAM_ID,
    AUTHORITY_OFFSET,
    DEACTIVATION_COOLDOWN_SLOTS,
    LookupTable,
    build_close_lookup_table_ix,
    build_deactivate_lookup_table_ix,
    decode_lookup_table,
)
from .codec import RecoverableSignature, decode_instruction
from .errors import AccountNotFound, LootboxError, MalformedRecord, ProfileError
from .keys import SigningContext, load_signing_context, rotate_admin
from .packer import TransactionPacker
from .pda import SYS_PROGRAM_ID, ata, state_pda, vault_pda
from .settings import ProfileParams, Settings, resolve_profile
from .state import LootboxState, load_state
from .tokens import (
    DEFAULT_DECIMALS,
    INITIAL_SUPPLY,
    build_create_ata_ix,
    build_create_mint_instructions,
    build_mint_nft_instructions,
    build_mint_to_ix,
    build_transfer_ix,
)
from .tx_builder import (
    build_admin_withdraw_instructions,
    build_buy_instructions,
    build_initialize_instructions,
    build_migrate_ix,
    build_obtain_ticket_ix,
    build_update_state_ix,
    build_withdraw_instructions,
)

logger = logging.getLogger("lootbox")


@dataclass
class Environment:
    client: Client
    profile: ProfileParams
    signing: SigningContext
    settings: Settings

    @classmethod
    def from_settings(cls, settings: Settings) -> "Environment":
        profile = resolve_profile(settings.profile)
        signing = load_signing_context(settings.secrets_path)
        url = profile.endpoint(signing.quick_node_key, settings.rpc_url)
        client = Client(url, commitment=settings.commitment, timeout=settings.rpc_timeout)
        logger.info("environment profile=%s program=%s rpc=%s", profile.name, profile.program_id, url.split("/")[2])
        return cls(client=client, profile=profile, signing=signing, settings=settings)

    @property
    def program_id(self) -> Pubkey:
        return self.profile.program_id

    @property
    def admin(self) -> Pubkey:
        return self.signing.admin.pubkey()

    def packer(self, payer: Keypair) -> TransactionPacker:
        return TransactionPacker(
            self.client,
            payer,
            commitment=self.settings.commitment,
            alt_batch_size=self.settings.alt_batch_size,
        )

    def lootbox_id(self, value: Optional[int]) -> int:
        return self.profile.lootbox_id if value is None else value

    def state_key(self, value: Optional[int]) -> Optional[int]:
        """Lootbox id used in the state seed; legacy deployments have none."""
        return None if self.profile.legacy_abi else self.lootbox_id(value)

    def require_current_abi(self, action: str) -> None:
        if self.profile.legacy_abi:
            raise ProfileError(f"{action} is not supported by the legacy program of profile {self.profile.name}")


def fetch_account_data(client: Client, address: Pubkey) -> Optional[bytes]:
    value = client.get_account_info(address).value
    if value is None:
        return None
    return bytes(value.data)


def account_exists(client: Client, address: Pubkey) -> bool:
    return client.get_account_info(address).value is not None


def fetch_state(env: Environment, lootbox_id: Optional[int] = None) -> Tuple[Pubkey, LootboxState]:
    address, _ = state_pda(env.admin, env.state_key(lootbox_id), env.program_id)
    return address, load_state(fetch_account_data(env.client, address), address)


def get_state(env: Environment, lootbox_id: Optional[int] = None) -> LootboxState:
    address, state = fetch_state(env, lootbox_id)
    vault, _ = vault_pda(env.admin, env.program_id)
    logger.info("state address=%s vault=%s version=%s", address, vault, state.version)
    return state


def _report_supply(env: Environment, lootbox_id: int, before: LootboxState) -> None:
    try:
        _, after = fetch_state(env, lootbox_id)
    except LootboxError as exc:
        logger.warning("state_reload_failed lootbox=%s error=%s", lootbox_id, exc)
        return
    logger.info("total_supply before=%s after=%s", before.total_supply, after.total_supply)


def buy(
    env: Environment,
    payment_mint: Pubkey,
    lootbox_id: Optional[int] = None,
    ticket_seed: Optional[int] = None,
    count: Optional[int] = None,
) -> Signature:
    env.require_current_abi("buy")
    lootbox_id = env.lootbox_id(lootbox_id)
    _, state = fetch_state(env, lootbox_id)
    buyer = env.signing.payer
    if ticket_seed is None:
        ticket_seed = int(time.time()) & 0xFFFFFFFF
    ixs = build_buy_instructions(
        env.program_id,
        state,
        buyer.pubkey(),
        payment_mint,
        ticket_seed,
        count=count if count is not None else env.settings.buy_batch_size,
        lootbox_id=lootbox_id,
        create_buyer_ata=not account_exists(env.client, ata(buyer.pubkey(), payment_mint)),
    )
    logger.info("buy lootbox=%s mint=%s seed=%s", lootbox_id, payment_mint, ticket_seed)
    sig = env.packer(buyer).send(ixs)
    _report_supply(env, lootbox_id, state)
    return sig


def withdraw(
    env: Environment,
    expire_at: int,
    ticket_mints: Sequence[Pubkey],
    rewards: Sequence[Tuple[Pubkey, int]],
    signature: RecoverableSignature,
    lootbox_id: Optional[int] = None,
) -> Signature:
    env.require_current_abi("withdraw")
    lootbox_id = env.lootbox_id(lootbox_id)
    _, state = fetch_state(env, lootbox_id)
    receiver = env.signing.payer
    missing = [mint for mint, _ in rewards if not account_exists(env.client, ata(receiver.pubkey(), mint))]
    ixs = build_withdraw_instructions(
        env.program_id,
        env.admin,
        lootbox_id,
        receiver.pubkey(),
        expire_at,
        ticket_mints,
        rewards,
        signature,
        missing_destination_mints=missing,
    )
    logger.info("withdraw lootbox=%s tickets=%s rewards=%s", lootbox_id, len(ticket_mints), len(rewards))
    sig = env.packer(receiver).send(ixs)
    _report_supply(env, lootbox_id, state)
    return sig


def obtain_ticket(
    env: Environment,
    ticket_id: int,
    expire_at: int,
    signature: RecoverableSignature,
    lootbox_id: Optional[int] = None,
) -> Signature:
    env.require_current_abi("obtain-ticket")
    lootbox_id = env.lootbox_id(lootbox_id)
    payer = env.signing.payer
    ix = build_obtain_ticket_ix(env.program_id, env.admin, lootbox_id, payer.pubkey(), ticket_id, expire_at, signature)
    logger.info("obtain_ticket lootbox=%s ticket=%s", lootbox_id, ticket_id)
    return env.packer(payer).send([ix], compute_units=env.settings.compute_unit_limit)


def initialize(
    env: Environment,
    lootbox_id: int,
    name: str,
    base_url: str,
    max_supply: int,
    begin_ts: int,
    end_ts: int,
    prices: Sequence[Tuple[Pubkey, int]],
    signer: Optional[bytes] = None,
) -> Signature:
    env.require_current_abi("init")
    signer = signer or env.profile.signer
    if signer is None:
        raise ValueError(f"profile {env.profile.name} has no signer key; pass one explicitly")
    vault, _ = vault_pda(env.admin, env.program_id)
    missing = [mint for mint, _ in prices if not account_exists(env.client, ata(vault, mint))]
    ixs = build_initialize_instructions(
        env.program_id,
        env.admin,
        lootbox_id,
        name,
        base_url,
        max_supply,
        begin_ts,
        end_ts,
        signer,
        prices,
        missing_payment_mints=missing,
    )
    logger.info("initialize lootbox=%s vault=%s payment_accounts_created=%s", lootbox_id, vault, len(missing))
    return env.packer(env.signing.admin).send(ixs)


def migrate(env: Environment, lootbox_id: Optional[int] = None) -> Signature:
    lootbox_id = env.lootbox_id(lootbox_id)
    address, state = fetch_state(env, lootbox_id)
    logger.info("migrate lootbox=%s state=%s from_version=%s", lootbox_id, address, state.version)
    ix = build_migrate_ix(env.program_id, env.admin, env.state_key(lootbox_id))
    sig = env.packer(env.signing.admin).send([ix])
    _, after = fetch_state(env, lootbox_id)
    logger.info("migrate_done version=%s", after.version)
    return sig


def update_state(
    env: Environment,
    lootbox_id: Optional[int] = None,
    max_supply: Optional[int] = None,
    begin_ts: Optional[int] = None,
    end_ts: Optional[int] = None,
    price: Optional[Tuple[Pubkey, int]] = None,
) -> Signature:
    env.require_current_abi("update-state")
    lootbox_id = env.lootbox_id(lootbox_id)
    ix = build_update_state_ix(
        env.program_id,
        env.admin,
        lootbox_id,
        max_supply=max_supply,
        begin_ts=begin_ts,
        end_ts=end_ts,
        price=price,
    )
    return env.packer(env.signing.admin).send([ix])


def admin_withdraw(
    env: Environment,
    mint: Pubkey,
    amount: int,
    lootbox_id: Optional[int] = None,
    destination_owner: Optional[Pubkey] = None,
) -> Signature:
    env.require_current_abi("admin-withdraw")
    lootbox_id = env.lootbox_id(lootbox_id)
    destination_owner = destination_owner or env.admin
    ixs = build_admin_withdraw_instructions(
        env.program_id,
        env.admin,
        lootbox_id,
        mint,
        amount,
        destination_owner=destination_owner,
        create_destination=not account_exists(env.client, ata(destination_owner, mint)),
    )
    return env.packer(env.signing.admin).send(ixs)


def new_admin(env: Environment) -> Tuple[Keypair, Signature]:
    """Rotate the admin key and move the old admin's spare lamports to it."""
    admin = env.signing.admin
    info = env.client.get_account_info(admin.pubkey()).value
    if info is None:
        raise AccountNotFound(admin.pubkey())
    reserve = env.client.get_minimum_balance_for_rent_exemption(len(info.data) + 2).value
    new_key = Keypair()
    rotate_admin(env.settings.secrets_path, new_key)
    lamports = max(0, info.lamports - reserve)
    logger.info("new_admin balance=%s reserve=%s transfer=%s", info.lamports, reserve, lamports)
    ix = create_account(
        CreateAccountParams(
            from_pubkey=admin.pubkey(),
            to_pubkey=new_key.pubkey(),
            lamports=lamports,
            space=0,
            owner=SYS_PROGRAM_ID,
        )
    )
    return new_key, env.packer(admin).send([ix], signers=[new_key])


def create_token(env: Environment, decimals: int = DEFAULT_DECIMALS, supply: int = INITIAL_SUPPLY) -> Tuple[Pubkey, Signature]:
    payer = env.signing.payer
    mint = Keypair()
    rent = env.client.get_minimum_balance_for_rent_exemption(MINT_LEN).value
    ixs = build_create_mint_instructions(payer.pubkey(), mint.pubkey(), payer.pubkey(), decimals, rent)
    ixs.append(build_create_ata_ix(payer.pubkey(), payer.pubkey(), mint.pubkey()))
    ixs.append(build_mint_to_ix(mint.pubkey(), payer.pubkey(), payer.pubkey(), supply * 10**decimals))
    sig = env.packer(payer).send(ixs, signers=[mint])
    logger.info("token_created mint=%s decimals=%s supply=%s", mint.pubkey(), decimals, supply)
    return mint.pubkey(), sig


def mint_tokens(env: Environment, mint: Pubkey, amount: int, owner: Optional[Pubkey] = None) -> Signature:
    payer = env.signing.payer
    owner = owner or payer.pubkey()
    ixs = []
    if not account_exists(env.client, ata(owner, mint)):
        ixs.append(build_create_ata_ix(payer.pubkey(), owner, mint))
    ixs.append(build_mint_to_ix(mint, owner, payer.pubkey(), amount))
    return env.packer(payer).send(ixs)


def transfer(env: Environment, mint: Pubkey, recipient: Pubkey, amount: int) -> Signature:
    payer = env.signing.payer
    decimals = env.client.get_token_supply(mint).value.decimals
    ixs = []
    if not account_exists(env.client, ata(recipient, mint)):
        ixs.append(build_create_ata_ix(payer.pubkey(), recipient, mint))
    ixs.append(build_transfer_ix(payer.pubkey(), recipient, mint, amount, decimals))
    return env.packer(payer).send(ixs)


def create_ata(env: Environment, mint: Pubkey, owner: Optional[Pubkey] = None) -> Pubkey:
    payer = env.signing.payer
    owner = owner or payer.pubkey()
    address = ata(owner, mint)
    if account_exists(env.client, address):
        logger.info("ata_exists address=%s", address)
        return address
    env.packer(payer).send([build_create_ata_ix(payer.pubkey(), owner, mint)])
    return address


def mint_nft(env: Environment, owner: Optional[Pubkey] = None) -> Tuple[Pubkey, Signature]:
    payer = env.signing.payer
    mint = Keypair()
    rent = env.client.get_minimum_balance_for_rent_exemption(MINT_LEN).value
    ixs = build_mint_nft_instructions(payer.pubkey(), mint.pubkey(), owner or payer.pubkey(), rent)
    return mint.pubkey(), env.packer(payer).send(ixs, signers=[mint])


def list_lookup_tables(env: Environment, authority: Pubkey) -> List[LookupTable]:
    resp = env.client.get_program_accounts(
        ALT_PROGRAM_ID,
        encoding="base64",
        filters=[MemcmpOpts(offset=AUTHORITY_OFFSET, bytes=str(authority))],
    )
    return [decode_lookup_table(bytes(item.account.data), item.pubkey) for item in resp.value]


def close_lookup_table(env: Environment, table: Pubkey, authority: Keypair) -> Tuple[str, Optional[Signature]]:
    """Deactivate an active table, or close one whose cool-down has passed.

    Returns the action taken: ``deactivated``, ``closed`` or ``cooling``.
    """
    lookup = decode_lookup_table(fetch_account_data(env.client, table), table)
    packer = env.packer(authority)
    if lookup.is_active:
        sig = packer.send([build_deactivate_lookup_table_ix(table, authority.pubkey())])
        logger.info("lookup_table_deactivated table=%s sig=%s", table, sig)
        return "deactivated", sig
    slot = env.client.get_slot().value
    if lookup.can_close(slot):
        sig = packer.send([build_close_lookup_table_ix(table, authority.pubkey(), authority.pubkey())])
        logger.info("lookup_table_closed table=%s sig=%s", table, sig)
        return "closed", sig
    remaining = lookup.deactivation_slot + DEACTIVATION_COOLDOWN_SLOTS - slot + 1
    logger.info("lookup_table_cooling table=%s slots_remaining=%s", table, remaining)
    return "cooling", None


def _key_flags(message, index: int) -> str:
    header = message.header
    keys = len(message.account_keys)
    signer = index < header.num_required_signatures
    if signer:
        writable = index < header.num_required_signatures - header.num_readonly_signed_accounts
    else:
        writable = index < keys - header.num_readonly_unsigned_accounts
    return ("s" if signer else "-") + ("w" if writable else "-")


def describe_transaction(raw: bytes, program_id: Optional[Pubkey] = None, legacy_abi: bool = False) -> List[str]:
    """Human readable dump of a serialized transaction, legacy or v0."""
    try:
        tx = VersionedTransaction.from_bytes(raw)
    except Exception as exc:  # noqa: BLE001
        raise MalformedRecord(f"not a serialized transaction: {exc}") from exc
    message = tx.message
    keys = list(message.account_keys)
    lines = [
        f"version: {'v0' if isinstance(message, MessageV0) else 'legacy'}",
        f"blockhash: {message.recent_blockhash}",
        f"signatures: {', '.join(str(s) for s in tx.signatures)}",
        "accounts:",
    ]
    lines.extend(f"  [{i}] {_key_flags(message, i)} {key}" for i, key in enumerate(keys))
    if isinstance(message, MessageV0):
        for lookup in message.address_table_lookups:
            lines.append(
                f"lookup table {lookup.account_key} writable={list(lookup.writable_indexes)} "
                f"readonly={list(lookup.readonly_indexes)}"
            )
    for n, ix in enumerate(message.instructions):
        program = keys[ix.program_id_index]
        accounts = [str(keys[i]) if i < len(keys) else f"lookup#{i - len(keys)}" for i in bytes(ix.accounts)]
        lines.append(f"instruction {n}: program {program}")
        lines.extend(f"    {account}" for account in accounts)
        lines.append(f"    data {bytes(ix.data).hex()}")
        if program_id is not None and program == program_id:
            try:
                lines.append(f"    decoded {decode_instruction(bytes(ix.data), legacy_abi)}")
            except MalformedRecord as exc:
                lines.append(f"    undecodable {exc}")
    return lines


def unpack_tx(encoded: str, program_id: Optional[Pubkey] = None, legacy_abi: bool = False) -> List[str]:
    try:
        raw = base64.b64decode(encoded, validate=True)
    except ValueError as exc:
        raise MalformedRecord(f"transaction is not valid base64: {exc}") from exc
    return describe_transaction(raw, program_id, legacy_abi)
