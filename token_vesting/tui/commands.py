"""Commands API: argparse-free access to contract data for the viewer.

Every function accepts explicit kwargs and returns a CommandResult.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client

from ..cli import simulate_contract
from ..client import fetch_contract
from ..config import DEFAULT_CONFIG_NAME, load_config, resolve_cluster
from ..errors import VestingError
from ..pda import resolve_seeds


@dataclass
class CommandResult:
    """Return type for viewer commands."""

    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)


def _config_path(config_path: str | Path | None) -> Path:
    return Path(config_path) if config_path else Path(DEFAULT_CONFIG_NAME)


def cmd_load_contract(config_path: str | Path | None, at: int) -> CommandResult:
    """Fetch the configured contract from its cluster."""
    try:
        config = load_config(_config_path(config_path))
        cluster = resolve_cluster(config)
        if not config.contract.seed:
            raise ValueError("contract.seed is not set")
        _, address = resolve_seeds(config.contract.seed, cluster.program_id)
        contract = fetch_contract(Client(cluster.rpc_url), address)
    except (VestingError, ValueError, OSError, SolanaRpcException) as exc:
        return CommandResult(success=False, message=str(exc))
    data = contract.to_dict()
    data["vested"] = contract.vested_at(at)
    data["rpc_url"] = cluster.rpc_url
    return CommandResult(success=True, message=f"Loaded {address}", data=data)


def cmd_simulate(config_path: str | Path | None, at: int) -> CommandResult:
    """Run the configured contract on a local bank up to ``at``."""
    try:
        config = load_config(_config_path(config_path))
        cluster = resolve_cluster(config)
        result = simulate_contract(config, at, cluster.program_id)
    except (VestingError, ValueError, OSError) as exc:
        return CommandResult(success=False, message=str(exc))
    return CommandResult(success=True, message="Simulation finished", data=result)
