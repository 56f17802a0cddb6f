"""Tree-style console output for pipeline runs.

Stage output is captured while the stage runs and printed by the executor
once the stage has finished, prefixed at the stage's level. This keeps the
output of concurrently running stages from interleaving.

In GitHub Actions (GITHUB_ACTIONS=true) stages are wrapped in
::group:: / ::endgroup:: markers instead of tree prefixes.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rich.console import Console

if TYPE_CHECKING:
    from .context import OutputLine

SYMBOLS = {
    "entry": "▼",
    "branch": "├─▶",
    "last": "└─▶",
    "pipe": "│",
    "parallel_start": "⊕─┬─▶",
    "parallel_branch": "│ ├─▶",
    "parallel_last": "│ └─▶",
    "success": "✓",
    "failure": "✗",
    "skipped": "⊘",
}

CONTINUATION_PREFIX = f"{SYMBOLS['pipe']}    "
PARALLEL_CONTINUATION_PREFIX = f"{SYMBOLS['pipe']} {SYMBOLS['pipe']}    "

STATUS_STYLES = {
    "success": "green",
    "failure": "red",
    "skipped": "yellow",
}


def escape_command_data(value: str) -> str:
    """Escape the message of a GHA workflow command (`%`, CR and LF)."""
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def escape_command_property(value: str) -> str:
    """Escape a GHA workflow command property such as `title=` (also `:` and `,`)."""
    return escape_command_data(value).replace(":", "%3A").replace(",", "%2C")


@dataclass
class OutputManager:
    """Formats pipeline, stage and status lines with consistent styling."""

    console: Console = field(default_factory=Console)
    _is_gha: bool = field(default_factory=lambda: os.environ.get("GITHUB_ACTIONS") == "true")

    @property
    def in_gha(self) -> bool:
        return self._is_gha

    def print(self, message: str, style: str | None = None, end: str = "\n") -> None:
        self.console.print(message, style=style, end=end, markup=False, highlight=False, soft_wrap=True)

    def print_pipeline_header(self, name: str) -> None:
        if self._is_gha:
            return
        self.print(f"\n{SYMBOLS['entry']} {name}", style="bold blue")
        self.print(SYMBOLS["pipe"])

    def print_parallel_header(self, job_ids: Sequence[str]) -> None:
        if self._is_gha:
            return
        self.print(f"{SYMBOLS['parallel_start']} parallel: {', '.join(job_ids)}", style="bold cyan")

    def print_stage_header(self, name: str, *, is_last: bool = False, parallel: bool = False) -> None:
        if self._is_gha:
            print(f"::group::{escape_command_data(name)}", flush=True)
            return
        if parallel:
            symbol = SYMBOLS["parallel_last"] if is_last else SYMBOLS["parallel_branch"]
        else:
            symbol = SYMBOLS["last"] if is_last else SYMBOLS["branch"]
        self.print(f"{symbol} {name}", style="bold cyan")

    def print_lines(self, lines: Sequence[OutputLine], *, parallel: bool = False, show_debug: bool = False) -> None:
        prefix = "" if self._is_gha else (PARALLEL_CONTINUATION_PREFIX if parallel else CONTINUATION_PREFIX)
        for line in lines:
            if line.level == "dbg" and not show_debug:
                continue
            if line.level == "dbg":
                self.print(f"{prefix}[debug] {line.message}", style="dim")
            elif line.level == "err":
                self.print(f"{prefix}{line.message}", style="red")
            else:
                self.print(f"{prefix}{line.message}")

    def print_stage_status(
        self,
        name: str,
        status: str,
        elapsed: float,
        *,
        error: str | None = None,
        parallel: bool = False,
    ) -> None:
        symbol = SYMBOLS[status]
        if self._is_gha:
            if status == "failure" and error:
                title = escape_command_property(name)
                print(f"::error title={title}::{escape_command_data(error)}", flush=True)
            print(f"{symbol} {name} {status} in {elapsed:.2f}s", flush=True)
            print("::endgroup::", flush=True)
            return

        prefix = PARALLEL_CONTINUATION_PREFIX if parallel else CONTINUATION_PREFIX
        if error and status != "success":
            for line in error.split("\n")[:5]:
                self.print(f"{prefix}{line}", style=STATUS_STYLES[status])
        self.print(prefix, end="")
        if status == "skipped":
            self.print(f"{symbol} skipped", style=STATUS_STYLES[status])
        else:
            self.print(f"{symbol} {elapsed:.2f}s", style=STATUS_STYLES[status])

    def print_outputs(self, outputs: dict[str, str], *, parallel: bool = False) -> None:
        if self._is_gha:
            return
        prefix = PARALLEL_CONTINUATION_PREFIX if parallel else CONTINUATION_PREFIX
        for key, value in outputs.items():
            first_line = value.split("\n", 1)[0]
            suffix = " ..." if "\n" in value else ""
            self.print(f"{prefix}output: {key}={first_line}{suffix}", style="dim")

    def print_pipeline_status(self, name: str, success: bool, elapsed: float, stage_count: int) -> None:
        if success:
            self.print(
                f"\n{SYMBOLS['success']} {name} succeeded in {elapsed:.2f}s ({stage_count} stages)", style="bold green"
            )
        else:
            self.print(f"\n{SYMBOLS['failure']} {name} failed in {elapsed:.2f}s", style="bold red")

    def print_error(self, message: str) -> None:
        if self._is_gha:
            print(f"::error::{escape_command_data(message)}", flush=True)
        else:
            self.print(f"Error: {message}", style="bold red")


_output_manager: OutputManager | None = None


def get_output_manager() -> OutputManager:
    """Get the global output manager instance."""
    global _output_manager
    if _output_manager is None:
        _output_manager = OutputManager()
    return _output_manager


def reset_output_manager() -> None:
    """Reset the global output manager (for testing)."""
    global _output_manager
    _output_manager = None


def configure_output(force_color: bool | None = None) -> OutputManager:
    """Configure the global output manager."""
    global _output_manager

    console_kwargs: dict[str, Any] = {}
    if force_color is not None:
        console_kwargs["force_terminal"] = force_color

    _output_manager = OutputManager(console=Console(**console_kwargs))
    return _output_manager
