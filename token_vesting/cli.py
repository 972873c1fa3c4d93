"""CLI entrypoint for token-vesting."""

from __future__ import annotations

import argparse
import base64
import binascii
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from solana.rpc.api import Client
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .client import (
    decode_contract,
    fetch_contract,
    load_keypair,
    send_change_destination,
    send_create,
    send_init,
    send_unlock,
)
from .config import (
    DEFAULT_CONFIG_NAME,
    VestingConfig,
    default_config_data,
    load_config,
    parse_pubkey,
    parse_u64,
    resolve_cluster,
    write_config_data,
)
from .constants import U64_MAX
from .errors import DecodeError, VestingError
from .host import LocalBank
from .instruction import (
    ChangeDestination,
    Create,
    Empty,
    Init,
    Unlock,
    create_instruction,
    decode_instruction,
    init_instruction,
    instruction_to_dict,
    unlock_instruction,
)
from .pda import resolve_seeds
from .state import VestingRecord, VestingSchedule

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _load_optional_config(path: str | None) -> VestingConfig | None:
    if path:
        return load_config(path)
    if Path(DEFAULT_CONFIG_NAME).exists():
        return load_config(DEFAULT_CONFIG_NAME)
    return None


def _require_config(path: str | None) -> VestingConfig:
    return load_config(path or DEFAULT_CONFIG_NAME)


def _parse_schedule(text: str) -> VestingSchedule:
    if ":" not in text:
        raise ValueError(f"schedule must be RELEASE_TIME:AMOUNT, got '{text}'")
    release_time, amount = text.split(":", 1)
    return VestingSchedule(
        release_time=parse_u64(release_time, "release_time"),
        amount=parse_u64(amount, "amount"),
    )


def _parse_data(text: str, as_base64: bool) -> bytes:
    value = text.strip()
    try:
        if as_base64:
            return base64.b64decode(value, validate=True)
        if value.lower().startswith("0x"):
            value = value[2:]
        return bytes.fromhex(value)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"could not decode instruction data: {exc}") from exc


def _seed_value(args: argparse.Namespace, config: VestingConfig | None) -> str:
    value = getattr(args, "seed", None) or (config.contract.seed if config else None)
    if not value:
        raise ValueError("no seed given; pass --seed or set contract.seed in the config")
    return value


def _print_contract(data: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2))
        return
    print(f"address:      {data['address']}")
    print(f"destination:  {data['destination_address']}")
    print(f"mint:         {data['mint_address']}")
    print(f"initialized:  {data['is_initialized']}")
    print(f"locked total: {data['total_locked']}")
    for idx, item in enumerate(data["schedules"]):
        print(f"  [{idx}] release_time={item['release_time']} amount={item['amount']}")


def _cmd_config_init(args: argparse.Namespace) -> int:
    path = Path(args.path)
    if path.exists() and not args.force:
        print(f"{path} already exists (use --force to overwrite)")
        return 1
    kwargs = {}
    if args.program_id:
        kwargs["program_id"] = str(parse_pubkey(args.program_id, "program_id"))
    if args.rpc_url:
        kwargs["rpc_url"] = args.rpc_url
    if args.payer:
        kwargs["payer"] = args.payer
    write_config_data(path, default_config_data(**kwargs))
    print(f"Wrote {path}")
    return 0


def _cmd_config_show(args: argparse.Namespace) -> int:
    config = _load_optional_config(args.config)
    cluster = resolve_cluster(
        config,
        cluster=args.cluster,
        rpc_url=args.rpc_url,
        program_id=args.program_id,
        payer=args.payer,
    )
    out = {
        "config": str(config.path) if config else None,
        "rpc_url": cluster.rpc_url,
        "program_id": str(cluster.program_id),
        "payer": cluster.payer,
    }
    if config is not None:
        contract = config.contract
        out["contract"] = {
            "seed": contract.seed,
            "mint": str(contract.mint) if contract.mint else None,
            "destination": str(contract.destination) if contract.destination else None,
            "source": str(contract.source) if contract.source else None,
            "source_owner": contract.source_owner,
            "schedules": len(contract.schedules),
        }
    print(json.dumps(out, indent=2))
    return 0


def _cmd_seeds(args: argparse.Namespace) -> int:
    config = _load_optional_config(args.config)
    cluster = resolve_cluster(config, program_id=args.program_id)
    seeds, address = resolve_seeds(args.value, cluster.program_id)
    print(json.dumps({"seeds": seeds.hex(), "vesting_address": str(address)}, indent=2))
    return 0


def _cmd_encode(args: argparse.Namespace) -> int:
    if args.kind == "empty":
        instruction = Empty(number=args.number)
    else:
        if not args.seeds:
            raise ValueError(f"--seeds is required for {args.kind}")
        program_id = resolve_cluster(_load_optional_config(args.config), program_id=args.program_id).program_id
        seeds, _ = resolve_seeds(args.seeds, program_id)
        if args.kind == "init":
            instruction = Init(seeds=seeds, number_of_schedules=args.number)
        elif args.kind == "create":
            if not args.mint or not args.destination:
                raise ValueError("--mint and --destination are required for create")
            instruction = Create(
                seeds=seeds,
                mint_address=parse_pubkey(args.mint, "mint"),
                destination_address=parse_pubkey(args.destination, "destination"),
                schedules=tuple(_parse_schedule(s) for s in args.schedule or []),
            )
        elif args.kind == "unlock":
            instruction = Unlock(seeds=seeds)
        else:
            instruction = ChangeDestination(seeds=seeds)
    data = instruction.pack()
    print(base64.b64encode(data).decode() if args.base64 else data.hex())
    return 0


def _cmd_decode(args: argparse.Namespace) -> int:
    data = _parse_data(args.data, args.base64)
    try:
        instruction = decode_instruction(data, strict=args.strict)
    except DecodeError as exc:
        print(str(exc))
        return 1
    print(json.dumps(instruction_to_dict(instruction), indent=2))
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    config = _load_optional_config(args.config)
    if args.file:
        raw = Path(args.file).read_bytes()
        address = parse_pubkey(args.address, "address") if args.address else Pubkey.default()
        contract = decode_contract(address, raw)
    else:
        cluster = resolve_cluster(
            config, cluster=args.cluster, rpc_url=args.rpc_url, program_id=args.program_id
        )
        if args.address:
            address = parse_pubkey(args.address, "address")
        else:
            _, address = resolve_seeds(_seed_value(args, config), cluster.program_id)
        contract = fetch_contract(Client(cluster.rpc_url), address)
    out = contract.to_dict()
    if args.at is not None:
        out["vested_at"] = {"time": args.at, "amount": contract.vested_at(args.at)}
    _print_contract(out, args.json)
    return 0


def simulate_contract(config: VestingConfig, at: int, program_id: Pubkey) -> dict:
    """Run Init, Create and Unlock for the configured contract on a fresh local bank."""
    contract = config.contract
    if not contract.seed:
        raise ValueError("contract.seed is required to simulate")
    if not contract.schedules:
        raise ValueError("at least one [[schedules]] entry is required to simulate")
    seeds, vesting_key = resolve_seeds(contract.seed, program_id)
    # An overflowing total is left for Create to reject.
    total = min(sum(s.amount for s in contract.schedules), U64_MAX)

    bank = LocalBank(program_id=program_id, clock=0)
    payer = Keypair().pubkey()
    source_owner = Keypair().pubkey()
    destination_owner = Keypair().pubkey()
    mint = contract.mint or Keypair().pubkey()
    source = contract.source or Keypair().pubkey()
    destination = contract.destination or Keypair().pubkey()
    escrow = Keypair().pubkey()

    bank.add_account(payer, lamports=10**12)
    bank.add_token_account(source, mint, source_owner, amount=total)
    bank.add_token_account(destination, mint, destination_owner)
    bank.add_token_account(escrow, mint, vesting_key)

    bank.process_transaction(
        [
            init_instruction(program_id, payer, vesting_key, seeds, len(contract.schedules)),
            create_instruction(
                program_id,
                vesting_key,
                escrow,
                source_owner,
                source,
                destination,
                mint,
                contract.schedules,
                seeds,
            ),
        ],
        [payer, source_owner],
    )

    bank.clock = at
    unlock_error: Optional[str] = None
    try:
        bank.process_transaction(
            [unlock_instruction(program_id, vesting_key, escrow, destination, seeds)], []
        )
    except VestingError as exc:
        unlock_error = str(exc)

    record = VestingRecord(bank.get_account(vesting_key).data)
    return {
        "vesting_address": str(vesting_key),
        "seeds": seeds.hex(),
        "time": at,
        "unlock_error": unlock_error,
        "balances": {
            "source": bank.token_balance(source),
            "escrow": bank.token_balance(escrow),
            "destination": bank.token_balance(destination),
        },
        "schedules": [
            {"release_time": s.release_time, "amount": s.amount} for s in record.schedules()
        ],
    }


def _cmd_simulate(args: argparse.Namespace) -> int:
    config = _require_config(args.config)
    cluster = resolve_cluster(config, program_id=args.program_id)
    result = simulate_contract(config, args.at, cluster.program_id)
    print(json.dumps(result, indent=2))
    return 0


def _send_context(args: argparse.Namespace):
    config = _load_optional_config(args.config)
    cluster = resolve_cluster(
        config,
        cluster=args.cluster,
        rpc_url=args.rpc_url,
        program_id=args.program_id,
        payer=args.payer,
    )
    if not cluster.payer:
        raise ValueError("no payer keypair; pass --payer or set cluster.payer")
    payer = load_keypair(cluster.payer)
    seeds, vesting_key = resolve_seeds(_seed_value(args, config), cluster.program_id)
    return config, cluster, Client(cluster.rpc_url), payer, seeds, vesting_key


def _cmd_send_init(args: argparse.Namespace) -> int:
    config, cluster, client, payer, seeds, vesting_key = _send_context(args)
    count = args.schedules
    if count is None:
        count = len(config.contract.schedules) if config else 0
    sig = send_init(client, cluster.program_id, payer, seeds, vesting_key, count)
    print(sig)
    return 0


def _cmd_send_create(args: argparse.Namespace) -> int:
    config, cluster, client, payer, seeds, vesting_key = _send_context(args)
    if config is None:
        raise FileNotFoundError(f"Vesting config not found: {args.config or DEFAULT_CONFIG_NAME}")
    contract = config.contract
    missing = [k for k in ("mint", "destination", "source") if getattr(contract, k) is None]
    if missing:
        raise ValueError(f"contract is missing: {', '.join(missing)}")
    if not contract.schedules:
        raise ValueError("at least one [[schedules]] entry is required")
    source_owner = load_keypair(contract.source_owner) if contract.source_owner else payer
    sig = send_create(
        client,
        cluster.program_id,
        payer,
        source_owner,
        contract.source,
        contract.destination,
        contract.mint,
        contract.schedules,
        seeds,
        vesting_key,
    )
    print(sig)
    return 0


def _cmd_send_unlock(args: argparse.Namespace) -> int:
    _, cluster, client, payer, seeds, vesting_key = _send_context(args)
    print(send_unlock(client, cluster.program_id, payer, seeds, vesting_key))
    return 0


def _cmd_send_change_destination(args: argparse.Namespace) -> int:
    _, cluster, client, payer, seeds, vesting_key = _send_context(args)
    owner = load_keypair(args.owner) if args.owner else payer
    new_destination = parse_pubkey(args.new_destination, "new_destination")
    print(
        send_change_destination(
            client, cluster.program_id, payer, owner, new_destination, seeds, vesting_key
        )
    )
    return 0


def _cmd_tui(args: argparse.Namespace) -> int:
    from .tui import launch_tui

    launch_tui(config_path=args.config, at=args.at)
    return 0


def _add_cluster_args(parser: argparse.ArgumentParser, payer: bool = False) -> None:
    parser.add_argument("--config", help=f"Vesting config (default: ./{DEFAULT_CONFIG_NAME})")
    parser.add_argument("--cluster", choices=["localnet", "devnet", "mainnet"])
    parser.add_argument("--rpc-url", help="Override RPC URL")
    parser.add_argument("--program-id", help="Override vesting program id")
    if payer:
        parser.add_argument("--payer", help="Override payer keypair path")


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog=os.path.basename(sys.argv[0]))
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_config = sub.add_parser("config", help="Manage vesting.toml")
    p_config_sub = p_config.add_subparsers(dest="config_cmd", required=True)

    p_config_init = p_config_sub.add_parser("init", help="Write a starter vesting.toml")
    p_config_init.add_argument("path", nargs="?", default=DEFAULT_CONFIG_NAME)
    p_config_init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p_config_init.add_argument("--program-id")
    p_config_init.add_argument("--rpc-url")
    p_config_init.add_argument("--payer")
    p_config_init.set_defaults(func=_cmd_config_init)

    p_config_show = p_config_sub.add_parser("show", help="Print the resolved configuration")
    _add_cluster_args(p_config_show, payer=True)
    p_config_show.set_defaults(func=_cmd_config_show)

    p_seeds = sub.add_parser("seeds", help="Derive seeds and the vesting address")
    p_seeds.add_argument("value", help="Seed phrase or 64 hex characters")
    p_seeds.add_argument("--config")
    p_seeds.add_argument("--program-id")
    p_seeds.set_defaults(func=_cmd_seeds)

    p_encode = sub.add_parser("encode", help="Encode an instruction")
    p_encode.add_argument(
        "kind", choices=["init", "create", "unlock", "change-destination", "empty"]
    )
    p_encode.add_argument("--seeds", help="Seed phrase or 64 hex characters")
    p_encode.add_argument("--number", type=int, default=0, help="Schedule count (init) or number (empty)")
    p_encode.add_argument("--mint")
    p_encode.add_argument("--destination")
    p_encode.add_argument(
        "--schedule", action="append", help="RELEASE_TIME:AMOUNT (repeatable)"
    )
    p_encode.add_argument("--base64", action="store_true", help="Print base64 instead of hex")
    p_encode.add_argument("--config")
    p_encode.add_argument("--program-id")
    p_encode.set_defaults(func=_cmd_encode)

    p_decode = sub.add_parser("decode", help="Decode instruction data to JSON")
    p_decode.add_argument("data", help="Hex (default) or base64 instruction data")
    p_decode.add_argument("--base64", action="store_true")
    p_decode.add_argument("--strict", action="store_true", help="Reject a partial trailing schedule")
    p_decode.set_defaults(func=_cmd_decode)

    p_show = sub.add_parser("show", help="Show a vesting contract")
    _add_cluster_args(p_show)
    p_show.add_argument("--seed", help="Seed phrase or hex seeds")
    p_show.add_argument("--address", help="Vesting account address")
    p_show.add_argument("--file", help="Decode raw record bytes from a file instead of RPC")
    p_show.add_argument("--at", type=int, help="Also report the amount vested at this time")
    p_show.add_argument("--json", action="store_true")
    p_show.set_defaults(func=_cmd_show)

    p_sim = sub.add_parser("simulate", help="Run the configured contract on a local bank")
    p_sim.add_argument("--config")
    p_sim.add_argument("--program-id")
    p_sim.add_argument("--at", type=int, default=0, help="Clock value for the unlock")
    p_sim.set_defaults(func=_cmd_simulate)

    p_send = sub.add_parser("send", help="Send instructions to a cluster")
    p_send_sub = p_send.add_subparsers(dest="send_cmd", required=True)

    p_send_init = p_send_sub.add_parser("init", help="Allocate the vesting record")
    _add_cluster_args(p_send_init, payer=True)
    p_send_init.add_argument("--seed")
    p_send_init.add_argument("--schedules", type=int, help="Number of schedules")
    p_send_init.set_defaults(func=_cmd_send_init)

    p_send_create = p_send_sub.add_parser("create", help="Init and fund the configured contract")
    _add_cluster_args(p_send_create, payer=True)
    p_send_create.add_argument("--seed")
    p_send_create.set_defaults(func=_cmd_send_create)

    p_send_unlock = p_send_sub.add_parser("unlock", help="Release vested tranches")
    _add_cluster_args(p_send_unlock, payer=True)
    p_send_unlock.add_argument("--seed")
    p_send_unlock.set_defaults(func=_cmd_send_unlock)

    p_send_change = p_send_sub.add_parser("change-destination", help="Move the contract destination")
    _add_cluster_args(p_send_change, payer=True)
    p_send_change.add_argument("--seed")
    p_send_change.add_argument("--owner", help="Keypair of the current destination owner")
    p_send_change.add_argument("new_destination", help="New destination token account")
    p_send_change.set_defaults(func=_cmd_send_change_destination)

    p_tui = sub.add_parser("tui", help="Launch the contract viewer")
    p_tui.add_argument("--config")
    p_tui.add_argument("--at", type=int, help="Clock value (default: now)")
    p_tui.set_defaults(func=_cmd_tui)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except FileNotFoundError as exc:
        print(str(exc))
        return 1
    except (VestingError, ValueError) as exc:
        print(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
