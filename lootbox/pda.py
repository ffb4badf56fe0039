from __future__ import annotations

from typing import List, Optional, Tuple

from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

SYS_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
SYSVAR_INSTRUCTIONS_ID = Pubkey.from_string("Sysvar1nstructions1111111111111111111111111")
METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

__all__ = [
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "METADATA_PROGRAM_ID",
    "SYSVAR_INSTRUCTIONS_ID",
    "SYS_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "ata",
    "master_edition_pda",
    "metadata_pda",
    "obtained_ticket_pda",
    "state_pda",
    "ticket_pda",
    "ticket_pdas",
    "vault_pda",
]

VAULT_SEED = b"vault"
STATE_SEED = b"state2"
TICKET_SEED = b"ticket"


def _be(value: int, width: int, label: str) -> bytes:
    try:
        return int(value).to_bytes(width, "big")
    except OverflowError as exc:
        raise ValueError(f"{label} {value} does not fit in {width * 8} bits") from exc


def vault_pda(owner: Pubkey, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address([bytes(owner), VAULT_SEED], program_id)


def state_pda(owner: Pubkey, lootbox_id: Optional[int], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """State account of a lootbox.

    Legacy deployments keep a single state per owner; pass ``None`` for those.
    """
    seeds = [bytes(owner), STATE_SEED]
    if lootbox_id is not None:
        seeds.append(_be(lootbox_id, 2, "lootbox id"))
    return Pubkey.find_program_address(seeds, program_id)


def ticket_pda(owner: Pubkey, lootbox_id: int, ticket_seed: int, index: int, program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Ticket account created by the ``index``-th slot of a buy batch."""
    return Pubkey.find_program_address(
        [
            bytes(owner),
            _be(lootbox_id, 2, "lootbox id"),
            _be(ticket_seed, 4, "ticket seed"),
            _be(index, 1, "ticket index"),
        ],
        program_id,
    )


def ticket_pdas(owner: Pubkey, lootbox_id: int, ticket_seed: int, count: int, program_id: Pubkey) -> List[Tuple[Pubkey, int]]:
    return [ticket_pda(owner, lootbox_id, ticket_seed, i, program_id) for i in range(count)]


def obtained_ticket_pda(owner: Pubkey, ticket_id: int, program_id: Pubkey) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [bytes(owner), TICKET_SEED, _be(ticket_id, 4, "ticket id")], program_id
    )


def ata(owner: Pubkey, mint: Pubkey) -> Pubkey:
    return get_associated_token_address(owner, mint)


def metadata_pda(mint: Pubkey) -> Pubkey:
    return Pubkey.find_program_address(
        [b"metadata", bytes(METADATA_PROGRAM_ID), bytes(mint)], METADATA_PROGRAM_ID
    )[0]


def master_edition_pda(mint: Pubkey) -> Pubkey:
    return Pubkey.find_program_address(
        [b"metadata", bytes(METADATA_PROGRAM_ID), bytes(mint), b"edition"], METADATA_PROGRAM_ID
    )[0]
