# ui/progress.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from ..model import TargetName, TaskResult
from .console import Console, get_console

QUEUED = "queued"
RUNNING = "running"
DONE = "done"


@dataclass
class ProgressEntry:
    """Visual state of one build task."""
    target: TargetName
    depth: int
    state: str = QUEUED
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    message: str = ""
    status: Optional[str] = None  # TaskResult.status once done

    def elapsed(self, now: Optional[float] = None) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else (now or time.monotonic())
        return end - self.started_at


class ProgressReporter:
    """
    Observer of build-task transitions: queued -> running -> done.

    This base class only tracks state, so it doubles as the headless
    reporter. It never influences the build itself.
    """

    def __init__(self) -> None:
        self.entries: Dict[TargetName, ProgressEntry] = {}
        self._lock = threading.Lock()

    def task_queued(self, target: TargetName, depth: int) -> None:
        with self._lock:
            entry = ProgressEntry(target=target, depth=depth)
            self.entries[target] = entry
            self.render(entry)

    def task_started(self, target: TargetName) -> None:
        with self._lock:
            entry = self.entries[target]
            entry.state = RUNNING
            entry.started_at = time.monotonic()
            self.render(entry)

    def task_output(self, target: TargetName, line: str) -> None:
        if not line.strip():
            return
        with self._lock:
            entry = self.entries[target]
            entry.message = line
            self.render(entry)

    def task_finished(self, result: TaskResult) -> None:
        with self._lock:
            entry = self.entries[result.target]
            entry.state = DONE
            entry.status = result.status
            entry.finished_at = time.monotonic()
            if entry.started_at is None:
                entry.started_at = entry.finished_at
            self.render(entry, result)

    def render(self, entry: ProgressEntry, result: Optional[TaskResult] = None) -> None:
        """Draw one entry. Called with the reporter lock held."""

    def states(self) -> Dict[TargetName, str]:
        with self._lock:
            return {t: e.state for t, e in self.entries.items()}


class ConsoleProgress(ProgressReporter):
    """Line-per-transition renderer, indented by dependency depth."""

    def __init__(self, console: Optional[Console] = None, show_queued: bool = True):
        super().__init__()
        self.console = console or get_console()
        self.show_queued = show_queued

    def format(self, entry: ProgressEntry, result: Optional[TaskResult] = None) -> Optional[str]:
        indent = "  " * entry.depth
        if entry.state == QUEUED:
            if not self.show_queued:
                return None
            return f"{indent}· {entry.target} queued"
        if entry.state == RUNNING:
            line = f"{indent}▶ {entry.target} ({entry.elapsed():.1f}s)"
            if entry.message:
                line += f" {entry.message}"
            return line

        elapsed = entry.elapsed()
        if entry.status == "ok":
            return f"{indent}✓ {entry.target} ({elapsed:.1f}s)"
        if entry.status == "skipped":
            dep = result.error.target if result and result.error else None
            reason = f"needs {dep}" if dep else "not run"
            return f"{indent}- {entry.target} skipped ({reason})"
        reason = result.error.message if result and result.error else "failed"
        return f"{indent}✗ {entry.target} ({elapsed:.1f}s) {reason}"

    def render(self, entry: ProgressEntry, result: Optional[TaskResult] = None) -> None:
        line = self.format(entry, result)
        if line is not None:
            self.console.print_line(line)

