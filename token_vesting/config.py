"""Vesting contract files (``vesting.toml``) and cluster resolution."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomli_w
from solders.pubkey import Pubkey

try:
    import tomllib
except ImportError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .constants import DEFAULT_PROGRAM_ID, DEFAULT_RPC_URL, U64_MAX
from .state import VestingSchedule

DEFAULT_CONFIG_NAME = "vesting.toml"

CLUSTER_URLS: dict[str, str] = {
    "localnet": DEFAULT_RPC_URL,
    "devnet": "https://api.devnet.solana.com",
    "mainnet": "https://api.mainnet-beta.solana.com",
}

ENV_RPC_URL = "VESTING_RPC_URL"
ENV_PROGRAM_ID = "VESTING_PROGRAM_ID"
ENV_PAYER = "VESTING_PAYER_KEYPAIR"


@dataclass(frozen=True)
class ClusterConfig:
    """Resolved cluster values used by RPC commands."""

    rpc_url: str
    program_id: Pubkey
    payer: Optional[str]


@dataclass
class ContractConfig:
    seed: Optional[str] = None
    mint: Optional[Pubkey] = None
    destination: Optional[Pubkey] = None
    source: Optional[Pubkey] = None
    source_owner: Optional[str] = None
    schedules: List[VestingSchedule] = field(default_factory=list)


@dataclass
class VestingConfig:
    path: Path
    cluster: Dict[str, str]
    contract: ContractConfig


def _load_toml(path: Path) -> Dict[str, Any]:
    return tomllib.loads(path.read_text())


def load_config_data(path: str | Path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Vesting config not found: {path}")
    return _load_toml(path)


def parse_u64(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer or string")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError(f"{name} must not be empty")
        parsed = int(text, 0)
    else:
        raise ValueError(f"{name} must be an integer or string")
    if parsed < 0 or parsed > U64_MAX:
        raise ValueError(f"{name} must be within u64 range")
    return parsed


def parse_pubkey(value: Any, name: str) -> Pubkey:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a base58 address")
    try:
        return Pubkey.from_string(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} is not a valid base58 address: {value}") from exc


def _optional_pubkey(table: Dict[str, Any], key: str, prefix: str) -> Optional[Pubkey]:
    raw = table.get(key)
    if raw is None or raw == "":
        return None
    return parse_pubkey(raw, f"{prefix}.{key}")


def parse_schedules(raw: Any) -> List[VestingSchedule]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("schedules must be an array of tables")
    schedules: List[VestingSchedule] = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"schedules[{idx}] must be a table")
        schedules.append(
            VestingSchedule(
                release_time=parse_u64(item.get("release_time"), f"schedules[{idx}].release_time"),
                amount=parse_u64(item.get("amount"), f"schedules[{idx}].amount"),
            )
        )
    return schedules


def resolve_config_path(config_path: str | Path, raw_path: str) -> str:
    candidate = Path(raw_path).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str((Path(config_path).resolve().parent / candidate).resolve())


def parse_config(data: Dict[str, Any], path: str | Path) -> VestingConfig:
    path = Path(path)
    cluster_raw = data.get("cluster") if isinstance(data.get("cluster"), dict) else {}
    cluster: Dict[str, str] = {}
    for key in ("rpc_url", "program_id", "payer"):
        value = cluster_raw.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValueError(f"cluster.{key} must be a string")
        if value.strip():
            cluster[key] = value.strip()
    if "payer" in cluster:
        cluster["payer"] = resolve_config_path(path, cluster["payer"])

    contract_raw = data.get("contract") if isinstance(data.get("contract"), dict) else {}
    seed = contract_raw.get("seed")
    if seed is not None and not isinstance(seed, str):
        raise ValueError("contract.seed must be a string")
    source_owner = contract_raw.get("source_owner")
    if source_owner is not None and not isinstance(source_owner, str):
        raise ValueError("contract.source_owner must be a keypair path")

    contract = ContractConfig(
        seed=seed or None,
        mint=_optional_pubkey(contract_raw, "mint", "contract"),
        destination=_optional_pubkey(contract_raw, "destination", "contract"),
        source=_optional_pubkey(contract_raw, "source", "contract"),
        source_owner=resolve_config_path(path, source_owner) if source_owner else None,
        schedules=parse_schedules(data.get("schedules")),
    )
    return VestingConfig(path=path, cluster=cluster, contract=contract)


def load_config(path: str | Path) -> VestingConfig:
    return parse_config(load_config_data(path), path)


def default_config_data(
    program_id: str = DEFAULT_PROGRAM_ID,
    rpc_url: str = DEFAULT_RPC_URL,
    payer: str = "~/.config/solana/id.json",
) -> Dict[str, Any]:
    return {
        "cluster": {
            "rpc_url": rpc_url,
            "program_id": program_id,
            "payer": payer,
        },
        "contract": {
            "seed": "",
            "mint": "",
            "destination": "",
            "source": "",
            "source_owner": payer,
        },
        "schedules": [],
    }


def config_to_data(config: VestingConfig) -> Dict[str, Any]:
    contract = config.contract
    contract_table: Dict[str, Any] = {}
    if contract.seed:
        contract_table["seed"] = contract.seed
    for key in ("mint", "destination", "source"):
        value = getattr(contract, key)
        if value is not None:
            contract_table[key] = str(value)
    if contract.source_owner:
        contract_table["source_owner"] = contract.source_owner
    return {
        "cluster": dict(config.cluster),
        "contract": contract_table,
        "schedules": [
            {"release_time": s.release_time, "amount": s.amount} for s in contract.schedules
        ],
    }


def write_config_data(path: str | Path, data: Dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(tomli_w.dumps(data).encode())


def load_solana_cli_config() -> dict[str, str]:
    path = os.environ.get("SOLANA_CONFIG") or os.environ.get("SOLANA_CONFIG_FILE")
    if path:
        cfg_path = Path(path)
    else:
        cfg_path = Path.home() / ".config" / "solana" / "cli" / "config.yml"
    try:
        text = cfg_path.read_text()
    except OSError:
        return {}
    cfg: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        value = value.strip().strip("\"'")
        if key:
            cfg[key] = value
    return cfg


def _clean(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped if stripped else None


def resolve_cluster(
    config: VestingConfig | None = None,
    *,
    cluster: str | None = None,
    rpc_url: str | None = None,
    program_id: str | None = None,
    payer: str | None = None,
) -> ClusterConfig:
    """Resolve cluster values: flags, environment, config file, Solana CLI, defaults."""
    env = os.environ
    file_values = config.cluster if config is not None else {}
    solana_cfg = load_solana_cli_config()

    if cluster and cluster not in CLUSTER_URLS:
        raise ValueError(f"unknown cluster '{cluster}' (expected localnet, devnet or mainnet)")
    resolved_rpc = (
        _clean(rpc_url)
        or (CLUSTER_URLS[cluster] if cluster else None)
        or _clean(env.get(ENV_RPC_URL))
        or _clean(file_values.get("rpc_url"))
        or _clean(solana_cfg.get("json_rpc_url"))
        or DEFAULT_RPC_URL
    )
    resolved_program = (
        _clean(program_id)
        or _clean(env.get(ENV_PROGRAM_ID))
        or _clean(file_values.get("program_id"))
        or DEFAULT_PROGRAM_ID
    )
    resolved_payer = (
        _clean(payer)
        or _clean(env.get(ENV_PAYER))
        or _clean(file_values.get("payer"))
        or _clean(solana_cfg.get("keypair_path"))
    )
    if resolved_payer:
        resolved_payer = str(Path(resolved_payer).expanduser())
    return ClusterConfig(
        rpc_url=resolved_rpc,
        program_id=parse_pubkey(resolved_program, "program_id"),
        payer=resolved_payer,
    )
