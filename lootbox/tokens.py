from __future__ import annotations

from typing import List, Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from spl.token.constants import MINT_LEN, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    AuthorityType,
    InitializeMintParams,
    MintToParams,
    SetAuthorityParams,
    TransferCheckedParams,
    create_associated_token_account,
    initialize_mint,
    mint_to,
    set_authority,
    transfer_checked,
)

from .pda import ata

DEFAULT_DECIMALS = 6
INITIAL_SUPPLY = 1_000


def build_create_mint_instructions(
    payer: Pubkey,
    mint: Pubkey,
    mint_authority: Pubkey,
    decimals: int,
    rent_lamports: int,
    freeze_authority: Optional[Pubkey] = None,
) -> List[Instruction]:
    return [
        create_account(
            CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=mint,
                lamports=rent_lamports,
                space=MINT_LEN,
                owner=TOKEN_PROGRAM_ID,
            )
        ),
        initialize_mint(
            InitializeMintParams(
                decimals=decimals,
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                mint_authority=mint_authority,
                freeze_authority=freeze_authority,
            )
        ),
    ]


def build_mint_to_ix(mint: Pubkey, owner: Pubkey, authority: Pubkey, amount: int) -> Instruction:
    return mint_to(
        MintToParams(
            program_id=TOKEN_PROGRAM_ID,
            mint=mint,
            dest=ata(owner, mint),
            mint_authority=authority,
            amount=amount,
            signers=[],
        )
    )


def build_transfer_ix(sender: Pubkey, recipient: Pubkey, mint: Pubkey, amount: int, decimals: int) -> Instruction:
    return transfer_checked(
        TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=ata(sender, mint),
            mint=mint,
            dest=ata(recipient, mint),
            owner=sender,
            amount=amount,
            decimals=decimals,
            signers=[],
        )
    )


def build_create_ata_ix(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    return create_associated_token_account(payer=payer, owner=owner, mint=mint)


def build_mint_nft_instructions(payer: Pubkey, mint: Pubkey, owner: Pubkey, rent_lamports: int) -> List[Instruction]:
    """A zero-decimal mint with a single token whose minting is then closed."""
    ixs = build_create_mint_instructions(payer, mint, payer, 0, rent_lamports, freeze_authority=payer)
    ixs.append(build_create_ata_ix(payer, owner, mint))
    ixs.append(build_mint_to_ix(mint, owner, payer, 1))
    ixs.append(
        set_authority(
            SetAuthorityParams(
                program_id=TOKEN_PROGRAM_ID,
                account=mint,
                authority=AuthorityType.MINT_TOKENS,
                current_authority=payer,
                signers=[],
                new_authority=None,
            )
        )
    )
    return ixs
