"""Program-derived address helpers for vesting records."""

from __future__ import annotations

import hashlib
import re
from typing import Tuple

from solders.pubkey import Pubkey

from .constants import SEEDS_LEN
from .errors import InvalidArgument

SEED_PREFIX_LEN = SEEDS_LEN - 1

_HEX_SEEDS_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def derive_vesting_address(seeds: bytes, program_id: Pubkey) -> Pubkey:
    """Address of the vesting record for ``seeds`` (create-program-address rules).

    Seeds that hash onto the ed25519 curve have no program address and are
    rejected with ``InvalidArgument``.
    """
    if len(seeds) != SEEDS_LEN:
        raise InvalidArgument(f"seeds must be {SEEDS_LEN} bytes, got {len(seeds)}")
    try:
        return Pubkey.create_program_address([bytes(seeds)], program_id)
    except ValueError as exc:
        raise InvalidArgument("seeds do not produce a valid program address") from exc
    except BaseException as exc:
        # solders panics instead of raising when the seeds land on the curve.
        if type(exc).__name__ != "PanicException":
            raise
        raise InvalidArgument("seeds do not produce a valid program address") from exc


def seed_prefix(phrase: str | bytes) -> bytes:
    raw = phrase.encode("utf-8") if isinstance(phrase, str) else bytes(phrase)
    if not raw:
        raise ValueError("seed phrase must not be empty")
    if len(raw) >= SEED_PREFIX_LEN:
        return raw[:SEED_PREFIX_LEN]
    return hashlib.sha256(raw).digest()[:SEED_PREFIX_LEN]


def find_vesting_seeds(phrase: str | bytes, program_id: Pubkey) -> Tuple[bytes, Pubkey]:
    """Return 32 usable seeds (31-byte prefix + bump) and the vesting address."""
    prefix = seed_prefix(phrase)
    address, bump = Pubkey.find_program_address([prefix], program_id)
    return prefix + bytes([bump]), address


def parse_seeds(text: str) -> bytes:
    value = text.strip()
    if not _HEX_SEEDS_RE.match(value):
        raise ValueError("seeds must be 64 hex characters")
    if value.lower().startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


def resolve_seeds(value: str, program_id: Pubkey) -> Tuple[bytes, Pubkey]:
    """Accept raw hex seeds or a seed phrase; return seeds and vesting address."""
    text = value.strip()
    if _HEX_SEEDS_RE.match(text):
        seeds = parse_seeds(text)
        return seeds, derive_vesting_address(seeds, program_id)
    return find_vesting_seeds(text, program_id)
