"""Single entrypoint of the vesting program."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from solders.pubkey import Pubkey

from .errors import VestingError
from .processor import process

if TYPE_CHECKING:
    from .host import AccountInfo, AuthorizationSet, Host

logger = logging.getLogger("token_vesting.entrypoint")


def process_instruction(
    program_id: Pubkey,
    accounts: Sequence["AccountInfo"],
    instruction_data: bytes,
    signers: "AuthorizationSet",
    host: "Host",
) -> None:
    """Apply one instruction; raises a ``VestingError`` if it is rejected."""
    try:
        process(program_id, accounts, instruction_data, signers, host)
    except VestingError as exc:
        logger.warning("instruction rejected: %s", exc)
        raise
