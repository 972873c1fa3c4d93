"""Host runtime collaborators and an in-memory bank that implements them.

The processor never talks to the ledger directly. Everything it needs from the
outside world (address derivation, account creation, token transfers, the
clock and rent) goes through a ``Host``. ``LocalBank`` is a complete
single-process host used by the tests and by ``token-vesting simulate``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from .constants import (
    ACCOUNT_STORAGE_OVERHEAD,
    DEFAULT_PROGRAM_PUBKEY,
    LAMPORTS_PER_BYTE_YEAR,
    MAX_ACCOUNT_DATA_LEN,
    RENT_EXEMPTION_YEARS,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    U64_MAX,
)
from .entrypoint import process_instruction
from .errors import HostError, InvalidArgument
from .pda import derive_vesting_address
from .state import TokenAccount

logger = logging.getLogger("token_vesting.host")

AuthorizationSet = FrozenSet[Pubkey]
DeriveAddress = Callable[[bytes, Pubkey], Pubkey]


@dataclass
class AccountInfo:
    """An account handle as presented to the program."""

    key: Pubkey
    owner: Pubkey = SYSTEM_PROGRAM_ID
    lamports: int = 0
    data: bytearray = field(default_factory=bytearray)
    executable: bool = False

    @property
    def is_empty(self) -> bool:
        return self.lamports == 0 and not self.data and self.owner == SYSTEM_PROGRAM_ID


class Host:
    """Collaborator interface consumed by the processor."""

    def derive_address(self, seeds: bytes, program_id: Pubkey) -> Pubkey:
        return derive_vesting_address(seeds, program_id)

    def minimum_balance(self, size: int) -> int:
        return (ACCOUNT_STORAGE_OVERHEAD + size) * LAMPORTS_PER_BYTE_YEAR * RENT_EXEMPTION_YEARS

    def current_time(self) -> int:
        raise NotImplementedError

    def create_account(
        self,
        payer: AccountInfo,
        target: AccountInfo,
        lamports: int,
        size: int,
        owner: Pubkey,
        signing_seeds: bytes,
    ) -> None:
        raise NotImplementedError

    def transfer(
        self,
        token_program: AccountInfo,
        source: AccountInfo,
        destination: AccountInfo,
        authority: Pubkey,
        signing_seeds: Optional[bytes],
        amount: int,
    ) -> None:
        raise NotImplementedError


class LocalBank(Host):
    """Single-process ledger with all-or-nothing transactions."""

    def __init__(
        self,
        program_id: Pubkey = DEFAULT_PROGRAM_PUBKEY,
        clock: int = 0,
        derive: DeriveAddress | None = None,
    ) -> None:
        self.program_id = program_id
        self.clock = clock
        self.accounts: Dict[Pubkey, AccountInfo] = {}
        self._derive = derive
        self._signers: AuthorizationSet = frozenset()

    # -- collaborator interface -------------------------------------------

    def derive_address(self, seeds: bytes, program_id: Pubkey) -> Pubkey:
        if self._derive is not None:
            return self._derive(seeds, program_id)
        return super().derive_address(seeds, program_id)

    def current_time(self) -> int:
        return self.clock

    def _signed_for(self, address: Pubkey, signing_seeds: Optional[bytes]) -> bool:
        if address in self._signers:
            return True
        if signing_seeds is None:
            return False
        try:
            return self.derive_address(signing_seeds, self.program_id) == address
        except InvalidArgument:
            return False

    def create_account(
        self,
        payer: AccountInfo,
        target: AccountInfo,
        lamports: int,
        size: int,
        owner: Pubkey,
        signing_seeds: bytes,
    ) -> None:
        if payer.key not in self._signers:
            raise HostError(f"payer {payer.key} did not sign")
        if not self._signed_for(target.key, signing_seeds):
            raise HostError(f"new account {target.key} did not sign")
        if not target.is_empty:
            raise HostError(f"account {target.key} already in use")
        if size > MAX_ACCOUNT_DATA_LEN:
            raise HostError(f"requested size {size} exceeds {MAX_ACCOUNT_DATA_LEN}")
        if payer.lamports < lamports:
            raise HostError(f"payer has {payer.lamports} lamports, needs {lamports}")
        payer.lamports -= lamports
        target.lamports = lamports
        target.data = bytearray(size)
        target.owner = owner
        logger.debug("created %s (%d bytes, %d lamports)", target.key, size, lamports)

    def transfer(
        self,
        token_program: AccountInfo,
        source: AccountInfo,
        destination: AccountInfo,
        authority: Pubkey,
        signing_seeds: Optional[bytes],
        amount: int,
    ) -> None:
        if token_program.key != TOKEN_PROGRAM_ID:
            raise HostError(f"unknown token program {token_program.key}")
        for account in (source, destination):
            if account.owner != TOKEN_PROGRAM_ID:
                raise HostError(f"{account.key} is not a token account")
        src = TokenAccount.unpack(source.data)
        dst = TokenAccount.unpack(destination.data)
        if src.mint != dst.mint:
            raise HostError("token accounts have different mints")
        if src.is_frozen or dst.is_frozen:
            raise HostError("token account is frozen")
        if authority != src.owner:
            raise HostError(f"{authority} is not the owner of {source.key}")
        if not self._signed_for(authority, signing_seeds):
            raise HostError(f"transfer authority {authority} did not sign")
        if src.amount < amount:
            raise HostError(f"insufficient token balance: {src.amount} < {amount}")
        if source.key == destination.key:
            return
        if dst.amount + amount > U64_MAX:
            raise HostError(f"destination balance would overflow: {dst.amount} + {amount}")
        debited = replace(src, amount=src.amount - amount).pack()
        credited = replace(dst, amount=dst.amount + amount).pack()
        source.data = bytearray(debited)
        destination.data = bytearray(credited)
        logger.debug("transferred %d from %s to %s", amount, source.key, destination.key)

    # -- ledger management ------------------------------------------------

    def add_account(
        self,
        key: Pubkey,
        lamports: int = 0,
        owner: Pubkey = SYSTEM_PROGRAM_ID,
        data: bytes = b"",
    ) -> AccountInfo:
        account = AccountInfo(key=key, owner=owner, lamports=lamports, data=bytearray(data))
        self.accounts[key] = account
        return account

    def add_token_account(
        self,
        key: Pubkey,
        mint: Pubkey,
        owner: Pubkey,
        amount: int = 0,
        delegate: Pubkey | None = None,
        close_authority: Pubkey | None = None,
    ) -> AccountInfo:
        state = TokenAccount(
            mint=mint,
            owner=owner,
            amount=amount,
            delegate=delegate,
            close_authority=close_authority,
        )
        return self.add_account(
            key,
            lamports=self.minimum_balance(TokenAccount.LEN),
            owner=TOKEN_PROGRAM_ID,
            data=state.pack(),
        )

    def get_account(self, key: Pubkey) -> AccountInfo | None:
        return self.accounts.get(key)

    def token_balance(self, key: Pubkey) -> int:
        account = self.accounts.get(key)
        if account is None:
            raise KeyError(f"unknown account {key}")
        return TokenAccount.unpack(account.data).amount

    def _load(self, key: Pubkey) -> AccountInfo:
        account = self.accounts.get(key)
        if account is None:
            account = AccountInfo(key=key)
            self.accounts[key] = account
        return account

    def process(
        self,
        program_id: Pubkey,
        keys: Iterable[Pubkey],
        data: bytes,
        signers: Iterable[Pubkey] = (),
    ) -> None:
        """Run one raw instruction as its own transaction."""
        self._run(lambda: self._invoke(program_id, list(keys), bytes(data), frozenset(signers)))

    def process_transaction(self, instructions: List[Instruction], signers: Iterable[Pubkey]) -> None:
        """Run solders instructions atomically; ``signers`` are the keys that signed."""
        signed = frozenset(signers)
        for ix in instructions:
            for meta in ix.accounts:
                if meta.is_signer and meta.pubkey not in signed:
                    raise HostError(f"missing signature for {meta.pubkey}")

        def run_all() -> None:
            for ix in instructions:
                keys = [meta.pubkey for meta in ix.accounts]
                authorized = frozenset(meta.pubkey for meta in ix.accounts if meta.is_signer)
                self._invoke(ix.program_id, keys, bytes(ix.data), authorized)

        self._run(run_all)

    def _run(self, body: Callable[[], None]) -> None:
        snapshot = {key: _copy_account(acc) for key, acc in self.accounts.items()}
        try:
            body()
        except Exception:
            self.accounts = snapshot
            raise
        finally:
            self._signers = frozenset()
        self.accounts = {key: acc for key, acc in self.accounts.items() if not acc.is_empty}

    def _invoke(self, program_id: Pubkey, keys: List[Pubkey], data: bytes, signers: AuthorizationSet) -> None:
        if program_id != self.program_id:
            raise HostError(f"program {program_id} is not loaded")
        accounts = [self._load(key) for key in keys]
        self._signers = signers
        process_instruction(program_id, accounts, data, signers, self)


def _copy_account(account: AccountInfo) -> AccountInfo:
    return AccountInfo(
        key=account.key,
        owner=account.owner,
        lamports=account.lamports,
        data=bytearray(account.data),
        executable=account.executable,
    )
