"""State transitions of the vesting program.

Each handler takes its accounts by position, checks every precondition, and
only then performs the transfer and writes the record. A failed check raises
before anything is mutated; a failed collaborator call leaves the record
untouched because the record is written last.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterator, List, NoReturn, Sequence, Type

from solders.pubkey import Pubkey

from .constants import (
    HEADER_LEN,
    SYSTEM_PROGRAM_ID,
    SYSVAR_CLOCK_ID,
    SYSVAR_RENT_ID,
    TOKEN_PROGRAM_ID,
    U64_MAX,
)
from .errors import (
    InsufficientFunds,
    InvalidAccountData,
    InvalidArgument,
    InvalidInstructionData,
    MissingAccount,
    MissingRequiredSignature,
    ValidationError,
)
from .instruction import (
    ChangeDestination,
    Create,
    Empty,
    Init,
    Unlock,
    decode_instruction,
    instruction_name,
)
from .state import (
    TokenAccount,
    VestingRecord,
    VestingSchedule,
    VestingScheduleHeader,
    record_len,
)

if TYPE_CHECKING:
    from .host import AccountInfo, AuthorizationSet, Host

logger = logging.getLogger("token_vesting.processor")


def _fail(error: Type[ValidationError], message: str) -> NoReturn:
    logger.warning(message)
    raise error(message)


def _next_account(accounts: Iterator["AccountInfo"], role: str) -> "AccountInfo":
    try:
        return next(accounts)
    except StopIteration:
        _fail(MissingAccount, f"missing {role} account")


def _check_vesting_address(
    host: "Host",
    seeds: bytes,
    program_id: Pubkey,
    vesting_account: "AccountInfo",
) -> Pubkey:
    try:
        derived = host.derive_address(seeds, program_id)
    except InvalidArgument as exc:
        _fail(InvalidArgument, f"invalid vesting seeds: {exc.message}")
    if derived != vesting_account.key:
        _fail(InvalidArgument, "provided vesting account does not match the seeds")
    return derived


def _token_account(account: "AccountInfo", role: str) -> TokenAccount:
    try:
        return TokenAccount.unpack(account.data)
    except InvalidAccountData as exc:
        _fail(InvalidAccountData, f"{role} is not a valid token account: {exc.message}")


def process_init(
    program_id: Pubkey,
    accounts: Sequence["AccountInfo"],
    host: "Host",
    seeds: bytes,
    number_of_schedules: int,
) -> None:
    it = iter(accounts)
    system_program = _next_account(it, "system program")
    rent_sysvar = _next_account(it, "rent sysvar")
    payer = _next_account(it, "payer")
    vesting_account = _next_account(it, "vesting")

    if system_program.key != SYSTEM_PROGRAM_ID:
        _fail(InvalidArgument, "provided system program account is invalid")
    if rent_sysvar.key != SYSVAR_RENT_ID:
        _fail(InvalidArgument, "provided rent sysvar account is invalid")

    size = record_len(number_of_schedules)
    vesting_key = _check_vesting_address(host, seeds, program_id, vesting_account)
    lamports = host.minimum_balance(size)

    logger.debug("creating vesting record %s: %d bytes, %d lamports", vesting_key, size, lamports)
    host.create_account(payer, vesting_account, lamports, size, program_id, seeds)


def process_create(
    program_id: Pubkey,
    accounts: Sequence["AccountInfo"],
    signers: "AuthorizationSet",
    host: "Host",
    seeds: bytes,
    mint_address: Pubkey,
    destination_address: Pubkey,
    schedules: Sequence[VestingSchedule],
) -> None:
    it = iter(accounts)
    token_program = _next_account(it, "token program")
    vesting_account = _next_account(it, "vesting")
    vesting_token_account = _next_account(it, "vesting token")
    source_owner = _next_account(it, "source token owner")
    source_token_account = _next_account(it, "source token")

    vesting_key = _check_vesting_address(host, seeds, program_id, vesting_account)

    if source_owner.key not in signers:
        _fail(MissingRequiredSignature, "source token account owner should be a signer")

    if vesting_account.owner != program_id:
        _fail(InvalidArgument, "vesting account should be owned by the vesting program")

    record = VestingRecord(vesting_account.data)
    if record.is_initialized:
        _fail(InvalidArgument, "cannot overwrite an existing vesting contract")

    escrow = _token_account(vesting_token_account, "vesting token account")
    if escrow.owner != vesting_key:
        _fail(InvalidArgument, "vesting token account should be owned by the vesting account")
    if escrow.delegate is not None:
        _fail(InvalidAccountData, "vesting token account should not have a delegate")
    if escrow.close_authority is not None:
        _fail(InvalidAccountData, "vesting token account should not have a close authority")

    expected = record_len(len(schedules))
    if len(record) != expected:
        _fail(InvalidAccountData, f"vesting account data is {len(record)} bytes, expected {expected}")

    total = 0
    for schedule in schedules:
        total += schedule.amount
        if total > U64_MAX:
            _fail(InvalidInstructionData, "total vesting amount overflows u64")

    source = _token_account(source_token_account, "source token account")
    if source.amount < total:
        _fail(InsufficientFunds, f"source token account has {source.amount}, needs {total}")

    host.transfer(token_program, source_token_account, vesting_token_account, source_owner.key, None, total)

    record.write_header(
        VestingScheduleHeader(
            destination_address=destination_address,
            mint_address=mint_address,
            is_initialized=True,
        )
    )
    record.write_schedules(schedules)
    logger.info("vesting contract %s created: %d tranches, %d locked", vesting_key, len(schedules), total)


def process_unlock(
    program_id: Pubkey,
    accounts: Sequence["AccountInfo"],
    host: "Host",
    seeds: bytes,
) -> None:
    it = iter(accounts)
    token_program = _next_account(it, "token program")
    clock_sysvar = _next_account(it, "clock sysvar")
    vesting_account = _next_account(it, "vesting")
    vesting_token_account = _next_account(it, "vesting token")
    destination_token_account = _next_account(it, "destination token")

    vesting_key = _check_vesting_address(host, seeds, program_id, vesting_account)

    if token_program.key != TOKEN_PROGRAM_ID:
        _fail(InvalidArgument, "provided token program account is invalid")

    record = VestingRecord(vesting_account.data)
    if len(record) < HEADER_LEN:
        _fail(InvalidAccountData, "vesting account data should never be shorter than the header")
    header = record.header()
    if header.destination_address != destination_token_account.key:
        _fail(InvalidArgument, "contract destination account does not match provided account")

    escrow = _token_account(vesting_token_account, "vesting token account")
    if escrow.owner != vesting_key:
        _fail(InvalidArgument, "vesting token account should be owned by the vesting account")

    if clock_sysvar.key != SYSVAR_CLOCK_ID:
        _fail(InvalidArgument, "provided clock sysvar account is invalid")

    now = host.current_time()
    total = 0
    updated: List[VestingSchedule] = []
    for schedule in record.schedules():
        logger.debug("clock %d, release time %d, amount %d", now, schedule.release_time, schedule.amount)
        if now >= schedule.release_time:
            total += schedule.amount
            schedule = schedule.released()
        updated.append(schedule)

    if total == 0:
        _fail(InvalidArgument, "vesting contract has not yet reached release time")

    logger.debug("escrow balance %d, releasing %d", escrow.amount, total)
    host.transfer(token_program, vesting_token_account, destination_token_account, vesting_key, seeds, total)

    record.write_schedules(updated)
    logger.info("released %d from %s to %s", total, vesting_key, destination_token_account.key)


def process_change_destination(
    program_id: Pubkey,
    accounts: Sequence["AccountInfo"],
    signers: "AuthorizationSet",
    host: "Host",
    seeds: bytes,
) -> None:
    it = iter(accounts)
    vesting_account = _next_account(it, "vesting")
    destination_token_account = _next_account(it, "current destination token")
    destination_owner = _next_account(it, "current destination owner")
    new_destination_token_account = _next_account(it, "new destination token")

    if len(vesting_account.data) < HEADER_LEN:
        _fail(InvalidAccountData, "vesting account data should never be shorter than the header")

    _check_vesting_address(host, seeds, program_id, vesting_account)

    record = VestingRecord(vesting_account.data)
    header = record.header()
    if header.destination_address != destination_token_account.key:
        _fail(InvalidArgument, "contract destination account does not match provided account")

    if destination_owner.key not in signers:
        _fail(InvalidArgument, "destination token account owner should be a signer")

    current = _token_account(destination_token_account, "current destination token account")
    if current.owner != destination_owner.key:
        _fail(InvalidArgument, "current destination token account isn't owned by the provided owner")

    record.write_destination(new_destination_token_account.key)
    logger.info(
        "destination changed from %s to %s",
        destination_token_account.key,
        new_destination_token_account.key,
    )


def process(
    program_id: Pubkey,
    accounts: Sequence["AccountInfo"],
    instruction_data: bytes,
    signers: "AuthorizationSet",
    host: "Host",
) -> None:
    instruction = decode_instruction(instruction_data)
    logger.info("instruction: %s", instruction_name(instruction))

    if isinstance(instruction, Empty):
        logger.info("empty instruction, number is %d", instruction.number)
    elif isinstance(instruction, Init):
        process_init(program_id, accounts, host, instruction.seeds, instruction.number_of_schedules)
    elif isinstance(instruction, Create):
        process_create(
            program_id,
            accounts,
            signers,
            host,
            instruction.seeds,
            instruction.mint_address,
            instruction.destination_address,
            instruction.schedules,
        )
    elif isinstance(instruction, Unlock):
        process_unlock(program_id, accounts, host, instruction.seeds)
    elif isinstance(instruction, ChangeDestination):
        process_change_destination(program_id, accounts, signers, host, instruction.seeds)
