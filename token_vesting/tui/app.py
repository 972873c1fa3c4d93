"""VestingApp: Textual viewer for one vesting contract."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.command import Hit, Hits, Provider
from textual.containers import Vertical
from textual.widgets import DataTable, Footer, Static

from .commands import CommandResult, cmd_load_contract, cmd_simulate
from .widgets.log_panel import SUCCESS, LogPanel, LogPanelHandler


class VestingCommandProvider(Provider):
    """Provides fuzzy-searchable commands for the command palette."""

    async def search(self, query: str) -> Hits:
        commands = [
            ("Reload Contract", "action_reload"),
            ("Simulate Locally", "action_simulate"),
            ("Quit", "action_quit"),
        ]
        for name, action in commands:
            if query.lower() in name.lower():
                yield Hit(
                    1.0 - (len(query) / len(name)) if query else 0.0,
                    name,
                    self._run_command(action),
                    help=f"Run {name}",
                )

    def _run_command(self, action: str):  # noqa: ANN202
        async def callback() -> None:
            method = getattr(self.app, action, None)
            if method is not None:
                result = method()
                if hasattr(result, "__await__"):
                    await result
        return callback


class VestingApp(App):
    """Shows the header, tranches and vested totals of a contract."""

    TITLE = "TOKEN VESTING"

    COMMANDS = {VestingCommandProvider}

    CSS = """
    Screen {
        background: #0a0e17;
    }
    #title {
        color: #00ffcc;
        text-style: bold;
        padding: 0 1;
    }
    #summary {
        padding: 0 1;
        height: auto;
    }
    #schedules {
        height: 1fr;
        border: solid #1a3a4a;
    }
    """

    BINDINGS = [
        Binding("ctrl+p", "command_palette", "Command Palette", show=True),
        Binding("r", "reload", "Reload", show=True),
        Binding("s", "simulate", "Simulate", show=True),
        Binding("q", "quit", "Quit", show=True),
    ]

    def __init__(self, config_path: str | Path | None = None, at: int | None = None) -> None:
        super().__init__()
        self.config_path = config_path
        self.at = at
        self._handler: LogPanelHandler | None = None

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static("TOKEN VESTING", id="title")
            yield Static("", id="summary")
            yield DataTable(id="schedules")
            yield LogPanel(id="log")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#schedules", DataTable)
        table.add_columns("#", "release time", "amount", "status")
        self._handler = LogPanelHandler(self.query_one("#log", LogPanel))
        self._handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logging.getLogger("token_vesting").addHandler(self._handler)
        self.action_reload()

    def on_unmount(self) -> None:
        if self._handler is not None:
            logging.getLogger("token_vesting").removeHandler(self._handler)

    def _now(self) -> int:
        return self.at if self.at is not None else int(time.time())

    def _fill_table(self, schedules: list[dict], now: int) -> None:
        table = self.query_one("#schedules", DataTable)
        table.clear()
        for idx, item in enumerate(schedules):
            if item["amount"] == 0:
                status = "released"
            elif now >= item["release_time"]:
                status = "unlockable"
            else:
                status = "locked"
            table.add_row(str(idx), str(item["release_time"]), str(item["amount"]), status)

    def _report(self, result: CommandResult) -> bool:
        log = self.query_one("#log", LogPanel)
        if result.success:
            log.entry(SUCCESS, result.message)
        else:
            log.entry(logging.ERROR, result.message)
        return result.success

    def action_reload(self) -> None:
        now = self._now()
        result = cmd_load_contract(self.config_path, now)
        if not self._report(result):
            self.query_one("#summary", Static).update("[#ff3366]No contract loaded[/]")
            return
        data = result.data
        self.query_one("#summary", Static).update(
            "\n".join(
                [
                    f"[#8892a4]address:[/] {data['address']}",
                    f"[#8892a4]destination:[/] {data['destination_address']}",
                    f"[#8892a4]mint:[/] {data['mint_address']}",
                    f"[#8892a4]locked:[/] {data['total_locked']}  "
                    f"[#8892a4]unlockable at {now}:[/] {data['vested']}",
                ]
            )
        )
        self._fill_table(data["schedules"], now)

    def action_simulate(self) -> None:
        now = self._now()
        result = cmd_simulate(self.config_path, now)
        if not self._report(result):
            return
        data = result.data
        balances = data["balances"]
        lines = [
            f"[#8892a4]simulated address:[/] {data['vesting_address']}",
            f"[#8892a4]escrow:[/] {balances['escrow']}  [#8892a4]destination:[/] {balances['destination']}",
        ]
        if data["unlock_error"]:
            lines.append(f"[#ffaa00]unlock at {now}: {data['unlock_error']}[/]")
        self.query_one("#summary", Static).update("\n".join(lines))
        self._fill_table(data["schedules"], now)
