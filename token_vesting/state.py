"""Fixed-layout records persisted by the vesting program.

A vesting record is one contiguous byte arena::

    [header: 65 bytes][schedule 0: 16 bytes]...[schedule n-1: 16 bytes]

All integers are little-endian and there is no padding. ``VestingRecord``
reads and writes the sub-ranges of that arena in place; the record classes
only know how to pack and unpack themselves.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional

from solders.pubkey import Pubkey

from .constants import (
    HEADER_DESTINATION_OFFSET,
    HEADER_INITIALIZED_OFFSET,
    HEADER_LEN,
    SCHEDULE_LEN,
    TOKEN_ACCOUNT_LEN,
    TOKEN_STATE_FROZEN,
    TOKEN_STATE_INITIALIZED,
    TOKEN_STATE_UNINITIALIZED,
    U64_MAX,
)
from .errors import InvalidAccountData, InvalidBoolean, TooShort

_SCHEDULE_STRUCT = struct.Struct("<QQ")
_HEADER_STRUCT = struct.Struct("<32s32sB")
# mint, owner, amount, delegate tag, delegate, state, native tag, native, delegated, close tag, close
_TOKEN_STRUCT = struct.Struct("<32s32sQI32sBIQQI32s")


def _check_u64(value: int, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    if value < 0 or value > U64_MAX:
        raise ValueError(f"{name} must be within u64 range")
    return value


def _decode_bool(raw: int) -> bool:
    if raw == 0:
        return False
    if raw == 1:
        return True
    raise InvalidBoolean(f"initialized flag must be 0 or 1, got {raw}")


@dataclass(frozen=True)
class VestingSchedule:
    """One release tranche: ``amount`` base units unlock at ``release_time``."""

    release_time: int
    amount: int

    LEN = SCHEDULE_LEN

    def __post_init__(self) -> None:
        _check_u64(self.release_time, "release_time")
        _check_u64(self.amount, "amount")

    def pack(self) -> bytes:
        return _SCHEDULE_STRUCT.pack(self.release_time, self.amount)

    def pack_into(self, buf: bytearray, offset: int = 0) -> None:
        _SCHEDULE_STRUCT.pack_into(buf, offset, self.release_time, self.amount)

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> "VestingSchedule":
        if len(data) - offset < SCHEDULE_LEN:
            raise TooShort(f"schedule needs {SCHEDULE_LEN} bytes, got {max(len(data) - offset, 0)}")
        release_time, amount = _SCHEDULE_STRUCT.unpack_from(data, offset)
        return cls(release_time=release_time, amount=amount)

    def released(self) -> "VestingSchedule":
        return VestingSchedule(release_time=self.release_time, amount=0)


@dataclass(frozen=True)
class VestingScheduleHeader:
    """Contract header: who receives the tokens and which mint they are."""

    destination_address: Pubkey
    mint_address: Pubkey
    is_initialized: bool

    LEN = HEADER_LEN

    def pack(self) -> bytes:
        return _HEADER_STRUCT.pack(
            bytes(self.destination_address),
            bytes(self.mint_address),
            1 if self.is_initialized else 0,
        )

    def pack_into(self, buf: bytearray, offset: int = 0) -> None:
        buf[offset : offset + HEADER_LEN] = self.pack()

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> "VestingScheduleHeader":
        if len(data) - offset < HEADER_LEN:
            raise TooShort(f"header needs {HEADER_LEN} bytes, got {max(len(data) - offset, 0)}")
        destination, mint, initialized = _HEADER_STRUCT.unpack_from(data, offset)
        return cls(
            destination_address=Pubkey(destination),
            mint_address=Pubkey(mint),
            is_initialized=_decode_bool(initialized),
        )


def unpack_schedules(data: bytes, strict: bool = False) -> List[VestingSchedule]:
    """Decode back-to-back schedules.

    A trailing partial record is ignored unless ``strict`` is set, in which
    case it is rejected with ``TooShort``.
    """
    count, remainder = divmod(len(data), SCHEDULE_LEN)
    if strict and remainder:
        raise TooShort(f"schedule list has {remainder} trailing bytes")
    return [VestingSchedule.unpack(data, idx * SCHEDULE_LEN) for idx in range(count)]


def pack_schedules(schedules: Iterable[VestingSchedule]) -> bytes:
    return b"".join(s.pack() for s in schedules)


def pack_schedules_into(schedules: Iterable[VestingSchedule], buf: bytearray, offset: int = 0) -> None:
    for schedule in schedules:
        schedule.pack_into(buf, offset)
        offset += SCHEDULE_LEN


def record_len(number_of_schedules: int) -> int:
    return HEADER_LEN + SCHEDULE_LEN * number_of_schedules


class VestingRecord:
    """In-place view over the data arena of a vesting account."""

    def __init__(self, data: bytearray) -> None:
        self.data = data

    def __len__(self) -> int:
        return len(self.data)

    @property
    def is_initialized(self) -> bool:
        # Only the last header byte is consulted; a record shorter than the
        # header has never been written by Create.
        if len(self.data) < HEADER_LEN:
            return False
        return self.data[HEADER_INITIALIZED_OFFSET] == 1

    @property
    def schedule_capacity(self) -> int:
        return max(len(self.data) - HEADER_LEN, 0) // SCHEDULE_LEN

    def header(self) -> VestingScheduleHeader:
        return VestingScheduleHeader.unpack(self.data)

    def schedules(self, strict: bool = False) -> List[VestingSchedule]:
        return unpack_schedules(bytes(self.data[HEADER_LEN:]), strict=strict)

    def write_header(self, header: VestingScheduleHeader) -> None:
        header.pack_into(self.data, 0)

    def write_destination(self, destination: Pubkey) -> None:
        start = HEADER_DESTINATION_OFFSET
        self.data[start : start + 32] = bytes(destination)

    def write_schedules(self, schedules: Iterable[VestingSchedule]) -> None:
        pack_schedules_into(schedules, self.data, HEADER_LEN)

    def total_locked(self) -> int:
        return sum(s.amount for s in self.schedules())

    def vested_at(self, now: int) -> int:
        return sum(s.amount for s in self.schedules() if now >= s.release_time)


@dataclass(frozen=True)
class TokenAccount:
    """The fields of a fungible-token account the vesting program reads."""

    mint: Pubkey
    owner: Pubkey
    amount: int
    delegate: Optional[Pubkey] = None
    state: int = TOKEN_STATE_INITIALIZED
    is_native: Optional[int] = None
    delegated_amount: int = 0
    close_authority: Optional[Pubkey] = None

    LEN = TOKEN_ACCOUNT_LEN

    def __post_init__(self) -> None:
        _check_u64(self.amount, "amount")
        _check_u64(self.delegated_amount, "delegated_amount")
        if self.is_native is not None:
            _check_u64(self.is_native, "is_native")

    @property
    def is_frozen(self) -> bool:
        return self.state == TOKEN_STATE_FROZEN

    def pack(self) -> bytes:
        return _TOKEN_STRUCT.pack(
            bytes(self.mint),
            bytes(self.owner),
            self.amount,
            1 if self.delegate is not None else 0,
            bytes(self.delegate) if self.delegate is not None else bytes(32),
            self.state,
            1 if self.is_native is not None else 0,
            self.is_native or 0,
            self.delegated_amount,
            1 if self.close_authority is not None else 0,
            bytes(self.close_authority) if self.close_authority is not None else bytes(32),
        )

    @classmethod
    def unpack(cls, data: bytes) -> "TokenAccount":
        if len(data) != TOKEN_ACCOUNT_LEN:
            raise InvalidAccountData(f"token account must be {TOKEN_ACCOUNT_LEN} bytes, got {len(data)}")
        (
            mint,
            owner,
            amount,
            delegate_tag,
            delegate,
            state,
            native_tag,
            native,
            delegated_amount,
            close_tag,
            close_authority,
        ) = _TOKEN_STRUCT.unpack(bytes(data))
        if state == TOKEN_STATE_UNINITIALIZED:
            raise InvalidAccountData("token account is not initialized")
        if state not in (TOKEN_STATE_INITIALIZED, TOKEN_STATE_FROZEN):
            raise InvalidAccountData(f"token account has invalid state {state}")
        return cls(
            mint=Pubkey(mint),
            owner=Pubkey(owner),
            amount=amount,
            delegate=Pubkey(delegate) if _option_tag(delegate_tag) else None,
            state=state,
            is_native=native if _option_tag(native_tag) else None,
            delegated_amount=delegated_amount,
            close_authority=Pubkey(close_authority) if _option_tag(close_tag) else None,
        )


def _option_tag(tag: int) -> bool:
    if tag == 0:
        return False
    if tag == 1:
        return True
    raise InvalidAccountData(f"invalid option tag {tag}")
