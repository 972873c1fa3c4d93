import random
import unittest
from dataclasses import replace

from solders.keypair import Keypair

from token_vesting.constants import (
    DEFAULT_PROGRAM_PUBKEY,
    SYSTEM_PROGRAM_ID,
    SYSVAR_CLOCK_ID,
    SYSVAR_RENT_ID,
    TAG_CHANGE_DESTINATION,
    TAG_CREATE,
    TAG_INIT,
    TAG_UNLOCK,
    TOKEN_PROGRAM_ID,
    U64_MAX,
)
from token_vesting.entrypoint import process_instruction
from token_vesting.errors import (
    HostError,
    InsufficientFunds,
    InvalidAccountData,
    InvalidArgument,
    InvalidInstructionData,
    MissingAccount,
    MissingRequiredSignature,
    UnknownTag,
    VestingError,
)
from token_vesting.host import AccountInfo, LocalBank
from token_vesting.instruction import (
    ChangeDestination,
    Create,
    Empty,
    Init,
    Unlock,
    change_destination_instruction,
    create_instruction,
    init_instruction,
    unlock_instruction,
)
from token_vesting.pda import find_vesting_seeds
from token_vesting.state import TokenAccount, VestingRecord, VestingSchedule


def _pubkey():
    return Keypair().pubkey()


class VestingFixture:
    """A funded source, an escrow owned by the vesting address, and a destination."""

    def __init__(self, phrase: str = "team-grant-2024", source_amount: int = 1000) -> None:
        self.program_id = DEFAULT_PROGRAM_PUBKEY
        self.bank = LocalBank(program_id=self.program_id, clock=0)
        self.seeds, self.vesting = find_vesting_seeds(phrase, self.program_id)
        self.payer = _pubkey()
        self.mint = _pubkey()
        self.source_owner = _pubkey()
        self.destination_owner = _pubkey()
        self.source = _pubkey()
        self.escrow = _pubkey()
        self.destination = _pubkey()

        self.bank.add_account(self.payer, lamports=10**12)
        self.bank.add_token_account(self.source, self.mint, self.source_owner, amount=source_amount)
        self.bank.add_token_account(self.escrow, self.mint, self.vesting)
        self.bank.add_token_account(self.destination, self.mint, self.destination_owner)

    def init_ix(self, count: int, seeds: bytes | None = None):
        return init_instruction(self.program_id, self.payer, self.vesting, seeds or self.seeds, count)

    def create_ix(self, schedules, seeds: bytes | None = None, escrow=None):
        return create_instruction(
            self.program_id,
            self.vesting,
            escrow or self.escrow,
            self.source_owner,
            self.source,
            self.destination,
            self.mint,
            schedules,
            seeds or self.seeds,
        )

    def unlock_ix(self, seeds: bytes | None = None, destination=None, **kwargs):
        return unlock_instruction(
            self.program_id,
            self.vesting,
            self.escrow,
            destination or self.destination,
            seeds or self.seeds,
            **kwargs,
        )

    def init(self, count: int) -> None:
        self.bank.process_transaction([self.init_ix(count)], [self.payer])

    def create(self, schedules) -> None:
        self.bank.process_transaction([self.create_ix(schedules)], [self.source_owner])

    def setup(self, schedules) -> None:
        self.init(len(schedules))
        self.create(schedules)

    def unlock(self, **kwargs) -> None:
        self.bank.process_transaction([self.unlock_ix(**kwargs)], [])

    def record(self) -> VestingRecord:
        return VestingRecord(self.bank.get_account(self.vesting).data)

    def balances(self):
        return (
            self.bank.token_balance(self.source),
            self.bank.token_balance(self.escrow),
            self.bank.token_balance(self.destination),
        )


class InitTests(unittest.TestCase):
    def test_init_allocates_record_at_derived_address(self) -> None:
        fx = VestingFixture()
        fx.init(1)
        account = fx.bank.get_account(fx.vesting)
        self.assertEqual(len(account.data), 81)
        self.assertEqual(account.owner, fx.program_id)
        self.assertEqual(account.lamports, fx.bank.minimum_balance(81))
        self.assertEqual(fx.bank.get_account(fx.payer).lamports, 10**12 - account.lamports)
        self.assertFalse(fx.record().is_initialized)

    def test_init_rejects_mismatched_address(self) -> None:
        fx = VestingFixture()
        other_seeds, _ = find_vesting_seeds("someone-else", fx.program_id)
        with self.assertRaises(InvalidArgument):
            fx.bank.process_transaction([fx.init_ix(1, seeds=other_seeds)], [fx.payer])
        self.assertIsNone(fx.bank.get_account(fx.vesting))

    def test_init_twice_is_refused_by_create_account(self) -> None:
        fx = VestingFixture()
        fx.init(1)
        with self.assertRaises(HostError):
            fx.init(1)

    def test_init_checks_system_program_and_rent(self) -> None:
        fx = VestingFixture()
        data = Init(fx.seeds, 1).pack()
        with self.assertRaises(InvalidArgument):
            fx.bank.process(fx.program_id, [_pubkey(), SYSVAR_RENT_ID, fx.payer, fx.vesting], data, [fx.payer])
        with self.assertRaises(InvalidArgument):
            fx.bank.process(fx.program_id, [SYSTEM_PROGRAM_ID, _pubkey(), fx.payer, fx.vesting], data, [fx.payer])

    def test_missing_account(self) -> None:
        fx = VestingFixture()
        data = Init(fx.seeds, 1).pack()
        with self.assertRaises(MissingAccount):
            fx.bank.process(fx.program_id, [SYSTEM_PROGRAM_ID, SYSVAR_RENT_ID, fx.payer], data, [fx.payer])


class CreateTests(unittest.TestCase):
    def test_create_moves_total_into_escrow(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(release_time=1, amount=111)])
        self.assertEqual(fx.balances(), (889, 111, 0))
        record = fx.record()
        self.assertTrue(record.is_initialized)
        header = record.header()
        self.assertEqual(header.destination_address, fx.destination)
        self.assertEqual(header.mint_address, fx.mint)
        self.assertEqual(record.schedules(), [VestingSchedule(1, 111)])

    def test_conservation_over_random_schedules(self) -> None:
        rng = random.Random(7)
        for _ in range(10):
            schedules = [
                VestingSchedule(rng.randrange(0, 10**6), rng.randrange(0, 10**6))
                for _ in range(rng.randrange(1, 6))
            ]
            total = sum(s.amount for s in schedules)
            fx = VestingFixture(source_amount=total + 5)
            fx.setup(schedules)
            self.assertEqual(fx.balances(), (5, total, 0))

    def test_init_and_create_in_one_transaction(self) -> None:
        fx = VestingFixture()
        schedules = [VestingSchedule(10, 100), VestingSchedule(20, 200)]
        fx.bank.process_transaction(
            [fx.init_ix(len(schedules)), fx.create_ix(schedules)], [fx.payer, fx.source_owner]
        )
        self.assertEqual(fx.balances(), (700, 300, 0))

    def test_mismatched_address(self) -> None:
        fx = VestingFixture()
        fx.init(1)
        other_seeds, _ = find_vesting_seeds("someone-else", fx.program_id)
        with self.assertRaises(InvalidArgument):
            fx.bank.process_transaction(
                [fx.create_ix([VestingSchedule(1, 1)], seeds=other_seeds)], [fx.source_owner]
            )

    def test_source_owner_must_sign(self) -> None:
        fx = VestingFixture()
        fx.init(1)
        ix = fx.create_ix([VestingSchedule(1, 1)])
        keys = [m.pubkey for m in ix.accounts]
        with self.assertRaises(MissingRequiredSignature):
            fx.bank.process(fx.program_id, keys, bytes(ix.data), signers=[])

    def test_record_must_be_owned_by_program(self) -> None:
        fx = VestingFixture()
        with self.assertRaisesRegex(InvalidArgument, "owned by the vesting program"):
            fx.create([VestingSchedule(1, 1)])

    def test_cannot_overwrite_existing_contract(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(1, 100)])
        with self.assertRaisesRegex(InvalidArgument, "overwrite"):
            fx.create([VestingSchedule(1, 100)])
        self.assertEqual(fx.balances(), (900, 100, 0))

    def test_escrow_must_be_owned_by_vesting_address(self) -> None:
        fx = VestingFixture()
        fx.init(1)
        stray = _pubkey()
        fx.bank.add_token_account(stray, fx.mint, _pubkey())
        with self.assertRaises(InvalidArgument):
            fx.bank.process_transaction(
                [fx.create_ix([VestingSchedule(1, 1)], escrow=stray)], [fx.source_owner]
            )

    def test_escrow_delegate_or_close_authority(self) -> None:
        for field in ("delegate", "close_authority"):
            with self.subTest(field=field):
                fx = VestingFixture()
                fx.init(1)
                escrow = _pubkey()
                fx.bank.add_token_account(escrow, fx.mint, fx.vesting, **{field: _pubkey()})
                with self.assertRaises(InvalidAccountData):
                    fx.bank.process_transaction(
                        [fx.create_ix([VestingSchedule(1, 1)], escrow=escrow)], [fx.source_owner]
                    )

    def test_record_length_must_match_schedule_count(self) -> None:
        fx = VestingFixture()
        fx.init(2)
        with self.assertRaises(InvalidAccountData):
            fx.create([VestingSchedule(1, 1)])

    def test_overflow_commits_nothing(self) -> None:
        fx = VestingFixture()
        fx.init(2)
        with self.assertRaises(InvalidInstructionData):
            fx.create([VestingSchedule(1, U64_MAX), VestingSchedule(2, 1)])
        self.assertEqual(fx.balances(), (1000, 0, 0))
        self.assertFalse(fx.record().is_initialized)

    def test_insufficient_funds(self) -> None:
        fx = VestingFixture(source_amount=50)
        fx.init(1)
        with self.assertRaises(InsufficientFunds):
            fx.create([VestingSchedule(1, 51)])
        self.assertEqual(fx.balances(), (50, 0, 0))
        self.assertFalse(fx.record().is_initialized)

    def test_failed_create_rolls_back_init_in_same_transaction(self) -> None:
        fx = VestingFixture(source_amount=10)
        with self.assertRaises(InsufficientFunds):
            fx.bank.process_transaction(
                [fx.init_ix(1), fx.create_ix([VestingSchedule(1, 11)])],
                [fx.payer, fx.source_owner],
            )
        self.assertIsNone(fx.bank.get_account(fx.vesting))
        self.assertEqual(fx.bank.get_account(fx.payer).lamports, 10**12)

    def test_escrow_overflow_keeps_source_balance(self) -> None:
        fx = VestingFixture()
        escrow = fx.bank.get_account(fx.escrow)
        escrow.data = bytearray(TokenAccount(mint=fx.mint, owner=fx.vesting, amount=U64_MAX).pack())
        with self.assertRaisesRegex(HostError, "overflow"):
            fx.bank.process_transaction(
                [fx.init_ix(1), fx.create_ix([VestingSchedule(1, 1)])],
                [fx.payer, fx.source_owner],
            )
        self.assertEqual(fx.balances(), (1000, U64_MAX, 0))
        self.assertIsNone(fx.bank.get_account(fx.vesting))


class UnlockTests(unittest.TestCase):
    def test_unlock_releases_due_tranche_once(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(release_time=1, amount=111)])
        fx.bank.clock = 1
        fx.unlock()
        self.assertEqual(fx.balances(), (889, 0, 111))
        self.assertEqual(fx.record().schedules(), [VestingSchedule(1, 0)])

        fx.bank.clock = 1000
        with self.assertRaisesRegex(InvalidArgument, "release time"):
            fx.unlock()
        self.assertEqual(fx.balances(), (889, 0, 111))

    def test_unlock_before_release_time(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(release_time=5, amount=10)])
        fx.bank.clock = 4
        with self.assertRaises(InvalidArgument):
            fx.unlock()
        self.assertEqual(fx.record().schedules(), [VestingSchedule(5, 10)])

    def test_release_time_zero_vests_immediately(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(release_time=0, amount=25)])
        fx.unlock()
        self.assertEqual(fx.balances(), (975, 0, 25))

    def test_tranches_release_progressively(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(10, 100), VestingSchedule(20, 200), VestingSchedule(30, 300)])
        fx.bank.clock = 25
        fx.unlock()
        self.assertEqual(fx.balances(), (400, 300, 300))
        fx.bank.clock = 30
        fx.unlock()
        self.assertEqual(fx.balances(), (400, 0, 600))
        self.assertTrue(all(s.amount == 0 for s in fx.record().schedules()))

    def test_mismatched_address(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 1)])
        other_seeds, _ = find_vesting_seeds("someone-else", fx.program_id)
        with self.assertRaises(InvalidArgument):
            fx.unlock(seeds=other_seeds)

    def test_wrong_token_program(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 1)])
        with self.assertRaisesRegex(InvalidArgument, "token program"):
            fx.unlock(token_program_id=_pubkey())

    def test_wrong_destination(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 1)])
        other = _pubkey()
        fx.bank.add_token_account(other, fx.mint, _pubkey())
        with self.assertRaisesRegex(InvalidArgument, "destination"):
            fx.unlock(destination=other)

    def test_wrong_clock_sysvar(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 1)])
        with self.assertRaisesRegex(InvalidArgument, "clock"):
            fx.unlock(clock_sysvar_id=_pubkey())

    def test_failed_transfer_leaves_schedules_unchanged(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 100)])
        escrow = fx.bank.get_account(fx.escrow)
        drained = replace(TokenAccount.unpack(escrow.data), amount=40)
        escrow.data = bytearray(drained.pack())
        with self.assertRaises(HostError):
            fx.unlock()
        self.assertEqual(fx.record().schedules(), [VestingSchedule(0, 100)])
        self.assertEqual(fx.bank.token_balance(fx.destination), 0)

    def test_unlock_without_init(self) -> None:
        fx = VestingFixture()
        with self.assertRaisesRegex(InvalidAccountData, "shorter than the header"):
            fx.unlock()
        self.assertEqual(fx.balances(), (1000, 0, 0))


class ChangeDestinationTests(unittest.TestCase):
    def _change_ix(self, fx, owner, current, new, seeds=None):
        return change_destination_instruction(
            fx.program_id, fx.vesting, owner, current, new, seeds or fx.seeds
        )

    def test_change_destination_then_unlock(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 60)])
        new_destination = _pubkey()
        fx.bank.add_token_account(new_destination, fx.mint, _pubkey())
        fx.bank.process_transaction(
            [self._change_ix(fx, fx.destination_owner, fx.destination, new_destination)],
            [fx.destination_owner],
        )
        record = fx.record()
        self.assertEqual(record.header().destination_address, new_destination)
        self.assertEqual(record.header().mint_address, fx.mint)
        self.assertEqual(record.schedules(), [VestingSchedule(0, 60)])

        fx.unlock(destination=new_destination)
        self.assertEqual(fx.bank.token_balance(new_destination), 60)

    def test_owner_must_sign(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 1)])
        ix = self._change_ix(fx, fx.destination_owner, fx.destination, _pubkey())
        keys = [m.pubkey for m in ix.accounts]
        with self.assertRaisesRegex(InvalidArgument, "signer"):
            fx.bank.process(fx.program_id, keys, bytes(ix.data), signers=[])

    def test_signer_must_own_current_destination(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 1)])
        intruder = _pubkey()
        with self.assertRaisesRegex(InvalidArgument, "owned"):
            fx.bank.process_transaction(
                [self._change_ix(fx, intruder, fx.destination, intruder)], [intruder]
            )
        self.assertEqual(fx.record().header().destination_address, fx.destination)

    def test_current_destination_must_match_header(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 1)])
        other = _pubkey()
        owner = _pubkey()
        fx.bank.add_token_account(other, fx.mint, owner)
        with self.assertRaises(InvalidArgument):
            fx.bank.process_transaction([self._change_ix(fx, owner, other, _pubkey())], [owner])

    def test_mismatched_address(self) -> None:
        fx = VestingFixture()
        fx.setup([VestingSchedule(0, 1)])
        other_seeds, _ = find_vesting_seeds("someone-else", fx.program_id)
        with self.assertRaises(InvalidArgument):
            fx.bank.process_transaction(
                [self._change_ix(fx, fx.destination_owner, fx.destination, _pubkey(), other_seeds)],
                [fx.destination_owner],
            )

    def test_short_record(self) -> None:
        fx = VestingFixture()
        fx.bank.add_account(fx.vesting, lamports=1, owner=fx.program_id, data=bytes(10))
        data = ChangeDestination(fx.seeds).pack()
        with self.assertRaises(InvalidAccountData):
            fx.bank.process(
                fx.program_id,
                [fx.vesting, fx.destination, fx.destination_owner, _pubkey()],
                data,
                [fx.destination_owner],
            )


class DispatchTests(unittest.TestCase):
    def test_empty_changes_nothing(self) -> None:
        fx = VestingFixture()
        before = {k: (a.lamports, bytes(a.data)) for k, a in fx.bank.accounts.items()}
        fx.bank.process(fx.program_id, [], Empty(number=42).pack())
        after = {k: (a.lamports, bytes(a.data)) for k, a in fx.bank.accounts.items()}
        self.assertEqual(before, after)

    def test_decode_errors_reach_the_caller(self) -> None:
        fx = VestingFixture()
        with self.assertRaises(UnknownTag):
            fx.bank.process(fx.program_id, [], bytes([99]))

    def test_entrypoint_logs_and_reraises(self) -> None:
        fx = VestingFixture()
        account = AccountInfo(key=fx.vesting)
        data = Create(fx.seeds, fx.mint, fx.destination, ()).pack()
        with self.assertLogs("token_vesting.entrypoint", level="WARNING"):
            with self.assertRaises(MissingAccount):
                process_instruction(fx.program_id, [account], data, frozenset(), fx.bank)

    def test_unknown_program_is_refused(self) -> None:
        fx = VestingFixture()
        with self.assertRaises(HostError):
            fx.bank.process(_pubkey(), [], Empty(number=1).pack())

    def test_missing_signature_is_refused_before_running(self) -> None:
        fx = VestingFixture()
        with self.assertRaises(HostError):
            fx.bank.process_transaction([fx.init_ix(1)], [])
        self.assertIsNone(fx.bank.get_account(fx.vesting))

    def test_any_exception_restores_accounts(self) -> None:
        fx = VestingFixture()

        def body() -> None:
            fx.bank.get_account(fx.source).data = bytearray(3)
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            fx.bank._run(body)
        self.assertEqual(fx.balances(), (1000, 0, 0))


class RandomInstructionTests(unittest.TestCase):
    """Arbitrary instruction bytes against a funded bank."""

    def _payload(self, rng: random.Random, fx: VestingFixture) -> bytes:
        tag = rng.randrange(0, 6)
        if rng.random() < 0.5:
            if tag == TAG_INIT:
                return Init(fx.seeds, rng.randrange(0, 4)).pack()
            if tag == TAG_CREATE:
                schedules = [
                    VestingSchedule(rng.randrange(0, 50), rng.choice([0, 1, 500, U64_MAX]))
                    for _ in range(rng.randrange(0, 3))
                ]
                destination = rng.choice([fx.destination, fx.source])
                return Create(fx.seeds, fx.mint, destination, schedules).pack()
            if tag == TAG_UNLOCK:
                return Unlock(fx.seeds).pack()
            if tag == TAG_CHANGE_DESTINATION:
                return ChangeDestination(fx.seeds).pack()
        seeds = fx.seeds if rng.random() < 0.5 else bytes(rng.getrandbits(8) for _ in range(32))
        tail = bytes(rng.getrandbits(8) for _ in range(rng.randrange(0, 120)))
        return bytes([tag]) + seeds + tail

    def test_only_vesting_errors_and_totals_preserved(self) -> None:
        rng = random.Random(1234)
        fx = VestingFixture()
        fx.setup([VestingSchedule(5, 300), VestingSchedule(40, 200)])
        total = sum(fx.balances())
        known = [
            fx.payer,
            fx.mint,
            fx.source_owner,
            fx.destination_owner,
            fx.source,
            fx.escrow,
            fx.destination,
            fx.vesting,
            SYSTEM_PROGRAM_ID,
            SYSVAR_RENT_ID,
            SYSVAR_CLOCK_ID,
            TOKEN_PROGRAM_ID,
        ]
        for _ in range(500):
            fx.bank.clock = rng.randrange(0, 60)
            keys = rng.sample(known, rng.randrange(0, len(known) + 1))
            signers = [key for key in known if rng.random() < 0.3]
            try:
                fx.bank.process(fx.program_id, keys, self._payload(rng, fx), signers)
            except VestingError:
                pass
            self.assertEqual(sum(fx.balances()), total)


if __name__ == "__main__":
    unittest.main()
