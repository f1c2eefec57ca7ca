"""
Program-derived address utilities.

This module derives the PDAs the Orderly vault and the LayerZero programs
expect. Derivation is a pure function of the program id and the seed bytes:
nothing is cached or persisted, so the same inputs always give the same
address and bump.
"""

import logging
from typing import Sequence

from solders.pubkey import Pubkey
from solders.token.associated import get_associated_token_address

from .errors import DerivationExhausted, SeedValidationError
from .models import DerivedAddress

logger = logging.getLogger(__name__)

MAX_SEED_LEN = 32
MAX_SEEDS = 16

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")


def seed_str(value: str) -> bytes:
    """UTF-8 bytes of a string seed, used verbatim without a terminator."""
    return value.encode("utf-8")


def eid_seed(eid: int) -> bytes:
    """Encode a LayerZero endpoint id as a 4-byte big-endian seed."""
    if not 0 <= eid <= 0xFFFFFFFF:
        raise SeedValidationError(f"Endpoint id must fit in u32, got {eid}")
    return eid.to_bytes(4, "big")


def _validate_seeds(seeds: Sequence[bytes]) -> None:
    # The bump byte occupies one of the MAX_SEEDS slots
    if len(seeds) >= MAX_SEEDS:
        raise SeedValidationError(
            f"Too many seeds: {len(seeds)} (max {MAX_SEEDS - 1} plus bump)"
        )
    for index, seed in enumerate(seeds):
        if not isinstance(seed, (bytes, bytearray)):
            raise SeedValidationError(
                f"Seed {index} must be bytes, got {type(seed).__name__}"
            )
        if len(seed) > MAX_SEED_LEN:
            raise SeedValidationError(
                f"Seed {index} is {len(seed)} bytes (max {MAX_SEED_LEN})"
            )


def create_program_address(program_id: Pubkey, seeds: Sequence[bytes]) -> Pubkey | None:
    """One candidate address for a full seed list, bump included.

    Returns None when the candidate lies on the ed25519 curve, i.e. an
    address that a private key could control.
    """
    try:
        return Pubkey.create_program_address([bytes(seed) for seed in seeds], program_id)
    except Exception:  # noqa: BLE001 - solders does not export PubkeyError
        return None


def derive_address(program_id: Pubkey, seeds: Sequence[bytes]) -> DerivedAddress:
    """Find the canonical program-derived address for a seed list.

    Bumps are tried from 255 downwards and the first off-curve candidate
    wins. An empty seed list is a valid input.

    Args:
        program_id: Program that owns the derived address
        seeds: Ordered seed byte-strings

    Returns:
        The derived address and its bump

    Raises:
        SeedValidationError: If the seeds break the protocol limits
        DerivationExhausted: If no bump yields an off-curve address
    """
    seeds = list(seeds)
    _validate_seeds(seeds)

    for bump in range(255, 0, -1):
        address = create_program_address(program_id, [*seeds, bytes([bump])])
        if address is not None:
            return DerivedAddress(address=address, bump=bump)

    raise DerivationExhausted(
        f"No viable bump for program {program_id} with {len(seeds)} seed(s)"
    )


def find_associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID
) -> Pubkey:
    """Associated token account of ``owner`` for ``mint``."""
    return get_associated_token_address(owner, mint, token_program)
