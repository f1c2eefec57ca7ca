"""
Account layout tables for the vault's deposit and quote instructions.

The on-chain vault forwards the deposit to the LayerZero endpoint through a
CPI and reads the endpoint, send-library, executor, price-feed and DVN
accounts from the instruction's remaining accounts. Their order and
membership are a fixed contract with the deployed programs and cannot be
derived locally, so they live here as versioned tables instead of inline
derivation calls. A protocol upgrade adds a new ``*_V2`` table; call sites
only pick the table.

Table version 1 targets the LayerZero V2 deployment of the vault
(endpoint id big-endian in seeds, empty options buffer in the enforced
options seed).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Sequence

from solders.instruction import AccountMeta
from solders.pubkey import Pubkey

from .config import ProgramIds
from .models import AccountRef, DerivedAddress
from .pda import derive_address, eid_seed

logger = logging.getLogger(__name__)

LAYOUT_VERSION = 1


class SeedParam(Enum):
    """Per-request values substituted into seed templates."""

    DST_EID = "dst_eid"
    BROKER_HASH = "broker_hash"
    TOKEN_HASH = "token_hash"


class SlotKind(Enum):
    """Where an account slot takes its address from."""

    PDA = "pda"            # a name in the PDA table
    PROGRAM = "program"    # a ProgramIds field
    ACCOUNT = "account"    # a per-request account (depositor, token accounts, ...)


@dataclass(frozen=True, slots=True)
class PdaSpec:
    """Seed template and owning program of one PDA."""

    program: str
    seeds: tuple[bytes | SeedParam, ...]


@dataclass(frozen=True, slots=True)
class AccountSlot:
    """One position in an instruction's account list."""

    kind: SlotKind
    name: str
    is_signer: bool = False
    is_writable: bool = False


def _pda(name: str, writable: bool = False) -> AccountSlot:
    return AccountSlot(SlotKind.PDA, name, is_writable=writable)


def _program(name: str) -> AccountSlot:
    return AccountSlot(SlotKind.PROGRAM, name)


def _account(name: str, signer: bool = False, writable: bool = False) -> AccountSlot:
    return AccountSlot(SlotKind.ACCOUNT, name, is_signer=signer, is_writable=writable)


PDA_SEEDS_V1: dict[str, PdaSpec] = {
    # Vault program
    "vault_authority": PdaSpec("vault", (b"vault_authority",)),
    "allowed_broker": PdaSpec("vault", (b"allowed_broker", SeedParam.BROKER_HASH)),
    "allowed_token": PdaSpec("vault", (b"allowed_token", SeedParam.TOKEN_HASH)),
    # OApp accounts live under the vault program
    "oapp_config": PdaSpec("vault", (b"OAppConfig",)),
    "peer": PdaSpec("vault", (b"Peer", SeedParam.DST_EID)),
    "enforced_options": PdaSpec("vault", (b"Options", SeedParam.DST_EID, b"")),
    "nonce": PdaSpec("vault", (b"Nonce", SeedParam.DST_EID)),
    # Send library
    "send_lib_config": PdaSpec("send_lib", (b"SendLibConfig", SeedParam.DST_EID)),
    "default_send_lib": PdaSpec("send_lib", (b"DefaultSendLib", SeedParam.DST_EID)),
    "send_lib_info": PdaSpec("send_lib", (b"SendLibInfo",)),
    # Endpoint
    "endpoint_setting": PdaSpec("endpoint", (b"EndpointSettings",)),
    "uln_setting": PdaSpec("endpoint", (b"UlnSettings",)),
    "send_config": PdaSpec("endpoint", (b"SendConfig", SeedParam.DST_EID)),
    "default_send_config": PdaSpec("endpoint", (b"DefaultSendConfig", SeedParam.DST_EID)),
    # Workers
    "executor_config": PdaSpec("executor", (b"ExecutorConfig",)),
    "price_feed": PdaSpec("price_feed", (b"PriceFeed",)),
    "dvn_config": PdaSpec("dvn", (b"DVNConfig",)),
}

DEPOSIT_NAMED_ACCOUNTS_V1: tuple[AccountSlot, ...] = (
    _account("user", signer=True, writable=True),
    _pda("vault_authority", writable=True),
    _account("user_token_account", writable=True),
    _account("vault_token_account", writable=True),
    _account("deposit_token"),
    _pda("peer"),
    _pda("enforced_options"),
    _pda("oapp_config"),
    _pda("allowed_broker"),
    _pda("allowed_token"),
    _account("token_program"),
    _account("associated_token_program"),
    _account("system_program"),
)

# Event authorities are passed as the endpoint program id.
DEPOSIT_REMAINING_ACCOUNTS_V1: tuple[AccountSlot, ...] = (
    _program("endpoint"),
    _pda("oapp_config"),
    _program("send_lib"),
    _pda("send_lib_config"),
    _pda("default_send_lib"),
    _pda("send_lib_info"),
    _pda("endpoint_setting"),
    _pda("nonce", writable=True),
    _program("endpoint"),              # event authority
    _program("endpoint"),
    _pda("uln_setting"),
    _pda("send_config"),
    _pda("default_send_config"),
    _account("user", signer=True),
    _program("treasury"),
    _account("system_program"),
    _program("endpoint"),              # uln event authority
    _program("send_lib"),
    _program("executor"),
    _pda("executor_config", writable=True),
    _program("price_feed"),
    _pda("price_feed"),
    _program("dvn"),
    _pda("dvn_config", writable=True),
    _program("price_feed"),
    _pda("price_feed"),
)

QUOTE_NAMED_ACCOUNTS_V1: tuple[AccountSlot, ...] = (
    _pda("oapp_config"),
    _pda("peer"),
    _pda("enforced_options"),
    _pda("vault_authority"),
)

# Quoting is read-only: the send tail minus the payer, treasury and event accounts.
QUOTE_REMAINING_ACCOUNTS_V1: tuple[AccountSlot, ...] = (
    _program("endpoint"),
    _program("send_lib"),
    _pda("send_lib_config"),
    _pda("default_send_lib"),
    _pda("send_lib_info"),
    _pda("endpoint_setting"),
    _pda("nonce"),
    _pda("uln_setting"),
    _pda("send_config"),
    _pda("default_send_config"),
    _program("executor"),
    _pda("executor_config"),
    _program("price_feed"),
    _pda("price_feed"),
    _program("dvn"),
    _pda("dvn_config"),
    _program("price_feed"),
    _pda("price_feed"),
)


def resolve_seeds(
    spec: PdaSpec,
    dst_eid: int,
    broker_hash: bytes = b"",
    token_hash: bytes = b""
) -> list[bytes]:
    """Substitute request values into a seed template."""
    params: dict[SeedParam, bytes] = {
        SeedParam.DST_EID: eid_seed(dst_eid),
        SeedParam.BROKER_HASH: broker_hash,
        SeedParam.TOKEN_HASH: token_hash,
    }
    return [params[seed] if isinstance(seed, SeedParam) else seed for seed in spec.seeds]


def resolve_pda(
    name: str,
    programs: ProgramIds,
    dst_eid: int,
    broker_hash: bytes = b"",
    token_hash: bytes = b"",
    table: Mapping[str, PdaSpec] = PDA_SEEDS_V1
) -> DerivedAddress:
    """Derive one named PDA from the layout table."""
    spec = table[name]
    seeds = resolve_seeds(spec, dst_eid, broker_hash, token_hash)
    return derive_address(programs.get(spec.program), seeds)


def resolve_pdas(
    programs: ProgramIds,
    dst_eid: int,
    broker_hash: bytes,
    token_hash: bytes,
    table: Mapping[str, PdaSpec] = PDA_SEEDS_V1
) -> dict[str, DerivedAddress]:
    """Derive every PDA in the table.

    The derivations are independent of each other; all of them complete
    before this returns.
    """
    resolved = {
        name: resolve_pda(name, programs, dst_eid, broker_hash, token_hash, table)
        for name in table
    }
    for name, derived in resolved.items():
        logger.debug(f"PDA {name} (layout v{LAYOUT_VERSION}): {derived}")
    return resolved


def build_account_metas(
    slots: Sequence[AccountSlot],
    pdas: Mapping[str, DerivedAddress],
    programs: ProgramIds,
    accounts: Mapping[str, Pubkey]
) -> list[AccountMeta]:
    """Turn a slot table into concrete account metas, preserving order.

    Raises:
        KeyError: If a slot names an account that was not resolved
    """
    metas: list[AccountMeta] = []
    for slot in slots:
        match slot.kind:
            case SlotKind.PDA:
                pubkey = pdas[slot.name].address
            case SlotKind.PROGRAM:
                pubkey = programs.get(slot.name)
            case SlotKind.ACCOUNT:
                pubkey = accounts[slot.name]
        metas.append(AccountRef(pubkey, slot.is_signer, slot.is_writable).to_meta())
    return metas
