"""Terminal viewer for a vesting contract."""

from __future__ import annotations

from pathlib import Path


def launch_tui(config_path: str | Path | None = None, at: int | None = None) -> int:
    """Launch the vesting viewer."""
    from .app import VestingApp

    app = VestingApp(config_path=config_path, at=at)
    app.run()
    return 0
