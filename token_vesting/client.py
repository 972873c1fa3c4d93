"""RPC client for a deployed vesting program."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from solana.rpc.api import Client
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.instructions import create_associated_token_account, get_associated_token_address

from .constants import HEADER_LEN
from .errors import HostError
from .instruction import (
    change_destination_instruction,
    create_instruction,
    init_instruction,
    unlock_instruction,
)
from .state import VestingRecord, VestingSchedule, VestingScheduleHeader

logger = logging.getLogger("token_vesting.client")


@dataclass(frozen=True)
class VestingContract:
    """Decoded view of an on-chain vesting record."""

    address: Pubkey
    header: VestingScheduleHeader
    schedules: List[VestingSchedule]

    @property
    def total_locked(self) -> int:
        return sum(s.amount for s in self.schedules)

    def vested_at(self, now: int) -> int:
        return sum(s.amount for s in self.schedules if now >= s.release_time)

    def to_dict(self) -> dict:
        return {
            "address": str(self.address),
            "destination_address": str(self.header.destination_address),
            "mint_address": str(self.header.mint_address),
            "is_initialized": self.header.is_initialized,
            "schedules": [
                {"release_time": s.release_time, "amount": s.amount} for s in self.schedules
            ],
            "total_locked": self.total_locked,
        }


def load_keypair(path: str | Path) -> Keypair:
    data = json.loads(Path(path).expanduser().read_text())
    return Keypair.from_bytes(bytes(data))


def decode_contract(address: Pubkey, data: bytes) -> VestingContract:
    if len(data) < HEADER_LEN:
        raise ValueError(f"account {address} holds {len(data)} bytes, not a vesting record")
    record = VestingRecord(bytearray(data))
    return VestingContract(address=address, header=record.header(), schedules=record.schedules())


def fetch_account_data(client: Client, address: Pubkey) -> bytes:
    info = client.get_account_info(address, encoding="base64").value
    if info is None:
        raise HostError(f"account {address} not found")
    data = info.data
    if isinstance(data, (list, tuple)):
        return base64.b64decode(data[0])
    return bytes(data)


def fetch_contract(client: Client, address: Pubkey) -> VestingContract:
    return decode_contract(address, fetch_account_data(client, address))


def send_instructions(
    client: Client,
    instructions: Sequence[Instruction],
    payer: Keypair,
    extra_signers: Sequence[Keypair] = (),
) -> str:
    """Sign with the payer and any extra signers, send, and wait for confirmation."""
    tx = Transaction.new_with_payer(list(instructions), payer.pubkey())
    blockhash = client.get_latest_blockhash().value.blockhash
    signers = [payer]
    for signer in extra_signers:
        if signer.pubkey() != payer.pubkey():
            signers.append(signer)
    tx.sign(signers, blockhash)
    sig = client.send_raw_transaction(
        bytes(tx),
        opts=TxOpts(skip_preflight=False, preflight_commitment="confirmed"),
    ).value
    client.confirm_transaction(sig, commitment="confirmed")
    logger.info("confirmed %s", sig)
    return str(sig)


def build_create_instructions(
    program_id: Pubkey,
    payer: Pubkey,
    source_owner: Pubkey,
    source_token_account: Pubkey,
    destination_token_account: Pubkey,
    mint_address: Pubkey,
    schedules: Sequence[VestingSchedule],
    seeds: bytes,
    vesting_account: Pubkey,
) -> List[Instruction]:
    """Init the record, open the escrow token account, and fund the contract."""
    escrow = get_associated_token_address(vesting_account, mint_address)
    return [
        init_instruction(program_id, payer, vesting_account, seeds, len(schedules)),
        create_associated_token_account(payer, vesting_account, mint_address),
        create_instruction(
            program_id,
            vesting_account,
            escrow,
            source_owner,
            source_token_account,
            destination_token_account,
            mint_address,
            schedules,
            seeds,
        ),
    ]


def send_init(
    client: Client,
    program_id: Pubkey,
    payer: Keypair,
    seeds: bytes,
    vesting_account: Pubkey,
    number_of_schedules: int,
) -> str:
    ix = init_instruction(program_id, payer.pubkey(), vesting_account, seeds, number_of_schedules)
    return send_instructions(client, [ix], payer)


def send_create(
    client: Client,
    program_id: Pubkey,
    payer: Keypair,
    source_owner: Keypair,
    source_token_account: Pubkey,
    destination_token_account: Pubkey,
    mint_address: Pubkey,
    schedules: Sequence[VestingSchedule],
    seeds: bytes,
    vesting_account: Pubkey,
) -> str:
    instructions = build_create_instructions(
        program_id,
        payer.pubkey(),
        source_owner.pubkey(),
        source_token_account,
        destination_token_account,
        mint_address,
        schedules,
        seeds,
        vesting_account,
    )
    return send_instructions(client, instructions, payer, [source_owner])


def send_unlock(
    client: Client,
    program_id: Pubkey,
    payer: Keypair,
    seeds: bytes,
    vesting_account: Pubkey,
) -> str:
    contract = fetch_contract(client, vesting_account)
    escrow = get_associated_token_address(vesting_account, contract.header.mint_address)
    ix = unlock_instruction(
        program_id,
        vesting_account,
        escrow,
        contract.header.destination_address,
        seeds,
    )
    return send_instructions(client, [ix], payer)


def send_change_destination(
    client: Client,
    program_id: Pubkey,
    payer: Keypair,
    destination_owner: Keypair,
    new_destination_token_account: Pubkey,
    seeds: bytes,
    vesting_account: Pubkey,
) -> str:
    contract = fetch_contract(client, vesting_account)
    ix = change_destination_instruction(
        program_id,
        vesting_account,
        destination_owner.pubkey(),
        contract.header.destination_address,
        new_destination_token_account,
        seeds,
    )
    return send_instructions(client, [ix], payer, [destination_owner])
