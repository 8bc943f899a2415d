"""Console output formatting utilities for fake."""

from __future__ import annotations

import sys
import threading
from typing import Dict, Iterable, Optional

from ..model import TaskResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # Build tasks print from worker threads; one line at a time.
        self._lock = threading.Lock()

    def _out(self, line: str = "", err: bool = False) -> None:
        with self._lock:
            print(line, file=sys.stderr if err else sys.stdout, flush=True)

    def print_run_started(
        self,
        makefile: str,
        targets: Iterable[str],
        task_count: int,
    ) -> None:
        """Print run start information."""
        self._out("BUILD STARTED")
        self._out(f"Makefile: {makefile}")
        self._out(f"Targets: {' '.join(targets)}")
        self._out(f"Tasks: {task_count}")
        self._out()

    def print_plan_target(self, name: str, depth: int, dependencies: Iterable[str]) -> None:
        """Print one entry of a dry-run plan."""
        deps = " ".join(dependencies)
        suffix = f" <- {deps}" if deps else ""
        self._out(f"{'  ' * depth}{name}{suffix}")

    def print_line(self, line: str) -> None:
        """Print a pre-formatted line (progress output)."""
        self._out(line)

    def print_results(self, results: Dict[str, TaskResult]) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        for target, result in results.items():
            status_display = result.status.upper() if result.status != "ok" else "SUCCESS"
            line = f"  {target}: {status_display}"
            if result.status == "failed" and result.error is not None:
                line += f" ({result.error.message})"
            elif result.status == "skipped" and result.error is not None and result.error.target:
                line += f" (needs {result.error.target})"
            self._out(line)

    def print_failure_output(self, target: str, lines: Iterable[str]) -> None:
        """Print the last lines make wrote for a failed target."""
        lines = list(lines)
        if not lines:
            return
        self._out(f"\n--- {target} (last {len(lines)} lines) ---", err=True)
        for line in lines:
            self._out(f"  {line}", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"fake: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
