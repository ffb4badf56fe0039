from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from spl.token.instructions import ApproveParams, approve, create_associated_token_account

from .codec import (
    UPDATE_BEGIN_TS,
    UPDATE_END_TS,
    UPDATE_MAX_SUPPLY,
    UPDATE_PRICE,
    AdminWithdraw,
    Buy,
    Initialize,
    LegacyMigrate,
    Migrate,
    ObtainTicket,
    RecoverableSignature,
    UpdateState,
    Withdraw,
    encode_instruction,
)
from .pda import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    METADATA_PROGRAM_ID,
    SYSVAR_INSTRUCTIONS_ID,
    SYS_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    ata,
    master_edition_pda,
    metadata_pda,
    obtained_ticket_pda,
    state_pda,
    ticket_pdas,
    vault_pda,
)
from .state import LootboxState

BUY_BATCH_SIZE = 20
MAX_TICKETS_PER_WITHDRAW = 255
SIGNER_KEY_LEN = 33


def _lootbox_id(state: LootboxState, lootbox_id: Optional[int]) -> int:
    if lootbox_id is not None:
        return lootbox_id
    if state.lootbox_id is None:
        raise ValueError(f"state v{state.version} does not record a lootbox id; pass it explicitly")
    return state.lootbox_id


def build_buy_instructions(
    program_id: Pubkey,
    state: LootboxState,
    buyer: Pubkey,
    payment_mint: Pubkey,
    ticket_seed: int,
    count: int = BUY_BATCH_SIZE,
    lootbox_id: Optional[int] = None,
    create_buyer_ata: bool = False,
) -> List[Instruction]:
    """Instructions that pay for and issue ``count`` tickets.

    The unit price is the state's price for the vault's associated token
    account of ``payment_mint``. The buyer approves ``price * count`` before
    the program pulls the payment.
    """
    if not 1 <= count <= 256:
        raise ValueError(f"ticket count must be between 1 and 256, got {count}")
    lootbox_id = _lootbox_id(state, lootbox_id)
    vault, _ = vault_pda(state.owner, program_id)
    state_address, _ = state_pda(state.owner, lootbox_id, program_id)
    payment_ata = ata(vault, payment_mint)
    buyer_ata = ata(buyer, payment_mint)
    total = state.find_price(payment_ata) * count

    tickets = ticket_pdas(buyer, lootbox_id, ticket_seed, count, program_id)
    data = encode_instruction(
        Buy(lootbox_id=lootbox_id, ticket_seed=ticket_seed, ticket_bumps=[bump for _, bump in tickets])
    )
    accounts: List[AccountMeta] = [
        AccountMeta(pubkey=buyer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=buyer_ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=payment_ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=vault, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    accounts.extend(AccountMeta(pubkey=ticket, is_signer=False, is_writable=True) for ticket, _ in tickets)

    ixs: List[Instruction] = []
    if create_buyer_ata:
        ixs.append(create_associated_token_account(payer=buyer, owner=buyer, mint=payment_mint))
    ixs.append(
        approve(
            ApproveParams(
                program_id=TOKEN_PROGRAM_ID,
                source=buyer_ata,
                delegate=buyer,
                owner=buyer,
                amount=total,
                signers=[],
            )
        )
    )
    ixs.append(Instruction(program_id=program_id, data=data, accounts=accounts))
    return ixs


def build_withdraw_instructions(
    program_id: Pubkey,
    owner: Pubkey,
    lootbox_id: int,
    receiver: Pubkey,
    expire_at: int,
    ticket_mints: Sequence[Pubkey],
    rewards: Sequence[Tuple[Pubkey, int]],
    signature: RecoverableSignature,
    missing_destination_mints: Iterable[Pubkey] = (),
) -> List[Instruction]:
    """Burn ticket NFTs and pay out token rewards from the vault.

    ``missing_destination_mints`` lists reward mints whose receiver token
    account does not exist yet; an account creation is prepended for each.
    """
    if not ticket_mints:
        raise ValueError("withdraw needs at least one ticket")
    if len(ticket_mints) > MAX_TICKETS_PER_WITHDRAW:
        raise ValueError(f"at most {MAX_TICKETS_PER_WITHDRAW} tickets per withdraw, got {len(ticket_mints)}")
    vault, _ = vault_pda(owner, program_id)
    state_address, _ = state_pda(owner, lootbox_id, program_id)

    accounts: List[AccountMeta] = [
        AccountMeta(pubkey=receiver, is_signer=True, is_writable=False),
        AccountMeta(pubkey=vault, is_signer=False, is_writable=False),
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=METADATA_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    for mint in ticket_mints:
        for key in (mint, ata(receiver, mint), metadata_pda(mint), master_edition_pda(mint)):
            accounts.append(AccountMeta(pubkey=key, is_signer=False, is_writable=True))
    for mint, _ in rewards:
        for key in (mint, ata(vault, mint), ata(receiver, mint)):
            accounts.append(AccountMeta(pubkey=key, is_signer=False, is_writable=True))

    data = encode_instruction(
        Withdraw(
            expire_at=expire_at,
            signature=signature,
            tickets=len(ticket_mints),
            amounts=[amount for _, amount in rewards],
        )
    )
    ixs = [
        create_associated_token_account(payer=receiver, owner=receiver, mint=mint)
        for mint in missing_destination_mints
    ]
    ixs.append(Instruction(program_id=program_id, data=data, accounts=accounts))
    return ixs


def build_obtain_ticket_ix(
    program_id: Pubkey,
    owner: Pubkey,
    lootbox_id: int,
    payer: Pubkey,
    ticket_id: int,
    expire_at: int,
    signature: RecoverableSignature,
) -> Instruction:
    vault, _ = vault_pda(owner, program_id)
    state_address, _ = state_pda(owner, lootbox_id, program_id)
    ticket, ticket_bump = obtained_ticket_pda(owner, ticket_id, program_id)
    data = encode_instruction(
        ObtainTicket(
            lootbox_id=lootbox_id,
            ticket_bump=ticket_bump,
            ticket_id=ticket_id,
            expire_at=expire_at,
            signature=signature,
        )
    )
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=False),
        AccountMeta(pubkey=ata(payer, ticket), is_signer=False, is_writable=True),
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=vault, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ticket, is_signer=False, is_writable=True),
        AccountMeta(pubkey=metadata_pda(ticket), is_signer=False, is_writable=True),
        AccountMeta(pubkey=master_edition_pda(ticket), is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=METADATA_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def build_initialize_instructions(
    program_id: Pubkey,
    admin: Pubkey,
    lootbox_id: int,
    name: str,
    base_url: str,
    max_supply: int,
    begin_ts: int,
    end_ts: int,
    signer: bytes,
    prices: Sequence[Tuple[Pubkey, int]],
    missing_payment_mints: Iterable[Pubkey] = (),
) -> List[Instruction]:
    """Create the vault and state accounts of a new lootbox.

    ``prices`` pairs a payment mint with its per-ticket amount. The vault
    must own an associated token account per mint; ``missing_payment_mints``
    names those that still need creating.
    """
    if len(signer) != SIGNER_KEY_LEN:
        raise ValueError(f"signer key must be {SIGNER_KEY_LEN} bytes (compressed), got {len(signer)}")
    if not prices:
        raise ValueError("at least one payment price is required")
    vault, vault_bump = vault_pda(admin, program_id)
    state_address, state_bump = state_pda(admin, lootbox_id, program_id)
    data = encode_instruction(
        Initialize(
            lootbox_id=lootbox_id,
            vault_bump=vault_bump,
            state_bump=state_bump,
            max_supply=max_supply,
            begin_ts=begin_ts,
            end_ts=end_ts,
            signer=bytes(signer),
            name=name,
            prices=[amount for _, amount in prices],
            base_url=base_url,
        )
    )
    accounts = [
        AccountMeta(pubkey=admin, is_signer=True, is_writable=False),
        AccountMeta(pubkey=vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    accounts.extend(
        AccountMeta(pubkey=ata(vault, mint), is_signer=False, is_writable=False) for mint, _ in prices
    )
    ixs = [create_associated_token_account(payer=admin, owner=vault, mint=mint) for mint in missing_payment_mints]
    ixs.append(Instruction(program_id=program_id, data=data, accounts=accounts))
    return ixs


def build_migrate_ix(program_id: Pubkey, admin: Pubkey, lootbox_id: Optional[int]) -> Instruction:
    """Upgrade the state layout in place.

    ``lootbox_id=None`` targets a legacy deployment whose single state account
    is derived from the owner alone.
    """
    state_address, state_bump = state_pda(admin, lootbox_id, program_id)
    if lootbox_id is None:
        record = LegacyMigrate(state_bump=state_bump)
    else:
        record = Migrate(lootbox_id=lootbox_id, state_bump=state_bump)
    data = encode_instruction(record)
    accounts = [
        AccountMeta(pubkey=admin, is_signer=True, is_writable=False),
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=True),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def build_update_state_ix(
    program_id: Pubkey,
    admin: Pubkey,
    lootbox_id: int,
    max_supply: Optional[int] = None,
    begin_ts: Optional[int] = None,
    end_ts: Optional[int] = None,
    price: Optional[Tuple[Pubkey, int]] = None,
) -> Instruction:
    """Change selected fields of an existing lootbox state.

    ``price`` is a ``(payment_mint, amount)`` pair; the entry keyed by the
    vault's token account for that mint is replaced or added.
    """
    state_address, state_bump = state_pda(admin, lootbox_id, program_id)
    fields: Dict[str, object] = {}
    flags = 0
    if max_supply is not None:
        flags |= UPDATE_MAX_SUPPLY
        fields["max_supply"] = max_supply
    if begin_ts is not None:
        flags |= UPDATE_BEGIN_TS
        fields["begin_ts"] = begin_ts
    if end_ts is not None:
        flags |= UPDATE_END_TS
        fields["end_ts"] = end_ts
    if price is not None:
        vault, _ = vault_pda(admin, program_id)
        flags |= UPDATE_PRICE
        fields["price_ata"] = ata(vault, price[0])
        fields["price_amount"] = price[1]
    if not flags:
        raise ValueError("nothing to update")
    data = encode_instruction(UpdateState(lootbox_id=lootbox_id, state_bump=state_bump, flags=flags, **fields))
    accounts = [
        AccountMeta(pubkey=admin, is_signer=True, is_writable=False),
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=True),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


def build_admin_withdraw_instructions(
    program_id: Pubkey,
    admin: Pubkey,
    lootbox_id: int,
    mint: Pubkey,
    amount: int,
    destination_owner: Optional[Pubkey] = None,
    create_destination: bool = False,
) -> List[Instruction]:
    vault, _ = vault_pda(admin, program_id)
    state_address, _ = state_pda(admin, lootbox_id, program_id)
    destination_owner = destination_owner or admin
    destination = ata(destination_owner, mint)
    data = encode_instruction(AdminWithdraw(lootbox_id=lootbox_id, amount=amount))
    accounts = [
        AccountMeta(pubkey=admin, is_signer=True, is_writable=False),
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=False),
        AccountMeta(pubkey=vault, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ata(vault, mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    ixs: List[Instruction] = []
    if create_destination:
        ixs.append(create_associated_token_account(payer=admin, owner=destination_owner, mint=mint))
    ixs.append(Instruction(program_id=program_id, data=data, accounts=accounts))
    return ixs

