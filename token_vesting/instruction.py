"""Vesting program instructions: wire codec and transaction builders.

Wire layout (offsets after the tag byte)::

    0 Init               seeds[32] number_of_schedules:u32
    1 Create             seeds[32] mint[32] destination[32] (release_time:u64 amount:u64)*
    2 Unlock             seeds[32]
    3 ChangeDestination  seeds[32]
    4 Empty              number:u32
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, List, Tuple, Union

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .constants import (
    CREATE_FIXED_LEN,
    EMPTY_PAYLOAD_LEN,
    INIT_PAYLOAD_LEN,
    PUBKEY_LEN,
    SEEDS_LEN,
    SYSTEM_PROGRAM_ID,
    SYSVAR_CLOCK_ID,
    SYSVAR_RENT_ID,
    TAG_CHANGE_DESTINATION,
    TAG_CREATE,
    TAG_EMPTY,
    TAG_INIT,
    TAG_UNLOCK,
    TOKEN_PROGRAM_ID,
    U32_MAX,
)
from .errors import TooShort, UnknownTag
from .state import VestingSchedule, pack_schedules, unpack_schedules

_U32 = struct.Struct("<I")


def _check_seeds(seeds: bytes) -> None:
    if not isinstance(seeds, (bytes, bytearray)) or len(seeds) != SEEDS_LEN:
        raise ValueError(f"seeds must be {SEEDS_LEN} bytes")


def _check_u32(value: int, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0 or value > U32_MAX:
        raise ValueError(f"{name} must be within u32 range")


@dataclass(frozen=True)
class Init:
    """Allocate an empty vesting record sized for ``number_of_schedules``."""

    seeds: bytes
    number_of_schedules: int

    tag = TAG_INIT

    def __post_init__(self) -> None:
        _check_seeds(self.seeds)
        _check_u32(self.number_of_schedules, "number_of_schedules")
        object.__setattr__(self, "seeds", bytes(self.seeds))

    def pack(self) -> bytes:
        return bytes([TAG_INIT]) + self.seeds + _U32.pack(self.number_of_schedules)


@dataclass(frozen=True)
class Create:
    """Write the contract and move the total of all tranches into escrow."""

    seeds: bytes
    mint_address: Pubkey
    destination_address: Pubkey
    schedules: Tuple[VestingSchedule, ...]

    tag = TAG_CREATE

    def __post_init__(self) -> None:
        _check_seeds(self.seeds)
        object.__setattr__(self, "seeds", bytes(self.seeds))
        object.__setattr__(self, "schedules", tuple(self.schedules))

    def pack(self) -> bytes:
        return (
            bytes([TAG_CREATE])
            + self.seeds
            + bytes(self.mint_address)
            + bytes(self.destination_address)
            + pack_schedules(self.schedules)
        )


@dataclass(frozen=True)
class Unlock:
    """Release every tranche whose release time has passed."""

    seeds: bytes

    tag = TAG_UNLOCK

    def __post_init__(self) -> None:
        _check_seeds(self.seeds)
        object.__setattr__(self, "seeds", bytes(self.seeds))

    def pack(self) -> bytes:
        return bytes([TAG_UNLOCK]) + self.seeds


@dataclass(frozen=True)
class ChangeDestination:
    """Point the contract at a new destination token account."""

    seeds: bytes

    tag = TAG_CHANGE_DESTINATION

    def __post_init__(self) -> None:
        _check_seeds(self.seeds)
        object.__setattr__(self, "seeds", bytes(self.seeds))

    def pack(self) -> bytes:
        return bytes([TAG_CHANGE_DESTINATION]) + self.seeds


@dataclass(frozen=True)
class Empty:
    """Connectivity check; carries a number and does nothing else."""

    number: int

    tag = TAG_EMPTY

    def __post_init__(self) -> None:
        _check_u32(self.number, "number")

    def pack(self) -> bytes:
        return bytes([TAG_EMPTY]) + _U32.pack(self.number)


VestingInstruction = Union[Init, Create, Unlock, ChangeDestination, Empty]

INSTRUCTION_NAMES = {
    TAG_INIT: "Init",
    TAG_CREATE: "Create",
    TAG_UNLOCK: "Unlock",
    TAG_CHANGE_DESTINATION: "ChangeDestination",
    TAG_EMPTY: "Empty",
}


def _require(rest: bytes, size: int, name: str) -> None:
    if len(rest) < size:
        raise TooShort(f"{name} payload needs {size} bytes, got {len(rest)}")


def decode_instruction(data: bytes, strict: bool = False) -> VestingInstruction:
    """Parse instruction bytes into a typed command.

    ``strict`` rejects a Create payload whose schedule bytes are not a whole
    number of records instead of dropping the partial tail.
    """
    if not data:
        raise TooShort("instruction data is empty")
    tag = data[0]
    rest = bytes(data[1:])

    if tag == TAG_INIT:
        _require(rest, INIT_PAYLOAD_LEN, "Init")
        (number_of_schedules,) = _U32.unpack_from(rest, SEEDS_LEN)
        return Init(seeds=rest[:SEEDS_LEN], number_of_schedules=number_of_schedules)

    if tag == TAG_CREATE:
        _require(rest, CREATE_FIXED_LEN, "Create")
        mint = Pubkey(rest[SEEDS_LEN : SEEDS_LEN + PUBKEY_LEN])
        destination = Pubkey(rest[SEEDS_LEN + PUBKEY_LEN : CREATE_FIXED_LEN])
        schedules = unpack_schedules(rest[CREATE_FIXED_LEN:], strict=strict)
        return Create(
            seeds=rest[:SEEDS_LEN],
            mint_address=mint,
            destination_address=destination,
            schedules=tuple(schedules),
        )

    if tag == TAG_UNLOCK:
        _require(rest, SEEDS_LEN, "Unlock")
        return Unlock(seeds=rest[:SEEDS_LEN])

    if tag == TAG_CHANGE_DESTINATION:
        _require(rest, SEEDS_LEN, "ChangeDestination")
        return ChangeDestination(seeds=rest[:SEEDS_LEN])

    if tag == TAG_EMPTY:
        _require(rest, EMPTY_PAYLOAD_LEN, "Empty")
        (number,) = _U32.unpack_from(rest, 0)
        return Empty(number=number)

    raise UnknownTag(f"unsupported instruction tag {tag}")


def encode_instruction(instruction: VestingInstruction) -> bytes:
    return instruction.pack()


def instruction_name(instruction: VestingInstruction) -> str:
    return INSTRUCTION_NAMES[instruction.tag]


# Builders. Account order is part of the wire contract.


def init_instruction(
    program_id: Pubkey,
    payer: Pubkey,
    vesting_account: Pubkey,
    seeds: bytes,
    number_of_schedules: int,
    system_program_id: Pubkey = SYSTEM_PROGRAM_ID,
    rent_sysvar_id: Pubkey = SYSVAR_RENT_ID,
) -> Instruction:
    data = Init(seeds=seeds, number_of_schedules=number_of_schedules).pack()
    accounts = [
        AccountMeta(system_program_id, False, False),
        AccountMeta(rent_sysvar_id, False, False),
        AccountMeta(payer, True, True),
        AccountMeta(vesting_account, False, True),
    ]
    return Instruction(program_id, data, accounts)


def create_instruction(
    program_id: Pubkey,
    vesting_account: Pubkey,
    vesting_token_account: Pubkey,
    source_token_account_owner: Pubkey,
    source_token_account: Pubkey,
    destination_token_account: Pubkey,
    mint_address: Pubkey,
    schedules: Iterable[VestingSchedule],
    seeds: bytes,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    data = Create(
        seeds=seeds,
        mint_address=mint_address,
        destination_address=destination_token_account,
        schedules=tuple(schedules),
    ).pack()
    accounts = [
        AccountMeta(token_program_id, False, False),
        AccountMeta(vesting_account, False, True),
        AccountMeta(vesting_token_account, False, True),
        AccountMeta(source_token_account_owner, True, False),
        AccountMeta(source_token_account, False, True),
    ]
    return Instruction(program_id, data, accounts)


def unlock_instruction(
    program_id: Pubkey,
    vesting_account: Pubkey,
    vesting_token_account: Pubkey,
    destination_token_account: Pubkey,
    seeds: bytes,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
    clock_sysvar_id: Pubkey = SYSVAR_CLOCK_ID,
) -> Instruction:
    data = Unlock(seeds=seeds).pack()
    accounts = [
        AccountMeta(token_program_id, False, False),
        AccountMeta(clock_sysvar_id, False, False),
        AccountMeta(vesting_account, False, True),
        AccountMeta(vesting_token_account, False, True),
        AccountMeta(destination_token_account, False, True),
    ]
    return Instruction(program_id, data, accounts)


def change_destination_instruction(
    program_id: Pubkey,
    vesting_account: Pubkey,
    current_destination_token_account_owner: Pubkey,
    current_destination_token_account: Pubkey,
    target_destination_token_account: Pubkey,
    seeds: bytes,
) -> Instruction:
    data = ChangeDestination(seeds=seeds).pack()
    accounts = [
        AccountMeta(vesting_account, False, True),
        AccountMeta(current_destination_token_account, False, False),
        AccountMeta(current_destination_token_account_owner, True, False),
        AccountMeta(target_destination_token_account, False, False),
    ]
    return Instruction(program_id, data, accounts)


def empty_instruction(program_id: Pubkey, number: int) -> Instruction:
    return Instruction(program_id, Empty(number=number).pack(), [])


def instruction_to_dict(instruction: VestingInstruction) -> dict:
    out: dict = {"type": instruction_name(instruction)}
    if isinstance(instruction, Empty):
        out["number"] = instruction.number
        return out
    out["seeds"] = instruction.seeds.hex()
    if isinstance(instruction, Init):
        out["number_of_schedules"] = instruction.number_of_schedules
    elif isinstance(instruction, Create):
        out["mint_address"] = str(instruction.mint_address)
        out["destination_address"] = str(instruction.destination_address)
        schedules: List[dict] = [
            {"release_time": s.release_time, "amount": s.amount} for s in instruction.schedules
        ]
        out["schedules"] = schedules
    return out
