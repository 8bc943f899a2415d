# runner.py
from __future__ import annotations

import collections
import os
import subprocess
import threading
from pathlib import Path
from typing import Callable, Deque, List, Optional, Sequence

from .dag import Scheduler
from .errors import BuildFailure, LaunchError
from .model import BuildReport, Graph
from .ui.console import Console, get_console
from .ui.progress import ConsoleProgress

# Lines of make output kept per target for the failure report.
OUTPUT_TAIL = 20

OutputCallback = Callable[[str], None]


def _drain(stream, on_line: OutputCallback, tail: Deque[str], lock: threading.Lock) -> None:
    """Read one pipe to EOF, forwarding each non-blank line."""
    try:
        for raw in stream:
            line = raw.rstrip("\r\n")
            if not line.strip():
                continue
            with lock:
                tail.append(line)
            on_line(line)
    finally:
        stream.close()


class MakeRunner:
    """
    Runs the real make for exactly one target at a time.

    Every dependency the scheduler has already built is passed with "-o"
    (treat as old) so make does not walk into it again; that is what makes
    concurrent invocations on one makefile safe.
    """

    def __init__(
        self,
        makefile: str | Path,
        make: Sequence[str] = ("make",),
        extra_args: Sequence[str] = (),
        cwd: str | Path | None = None,
    ):
        self.makefile = str(makefile)
        self.make = list(make)
        self.extra_args = list(extra_args)
        self.cwd = str(cwd) if cwd is not None else None
        self._procs: set[subprocess.Popen] = set()
        self._procs_lock = threading.Lock()
        self._cancelled = False

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def command(self, target: str, dependencies: Sequence[str] = ()) -> List[str]:
        cmd = [*self.make, "-f", self.makefile, *self.extra_args, target]
        for dep in dependencies:
            cmd += ["-o", dep]
        return cmd

    def database_command(self) -> List[str]:
        return [*self.make, "-f", self.makefile, *self.extra_args, "--print-data-base", "--dry-run"]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _spawn(self, cmd: List[str], target: str | None) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                cmd,
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise LaunchError(cmd, e.strerror or str(e), target=target) from e

    def __call__(
        self,
        target: str,
        dependencies: Sequence[str] = (),
        on_output: Optional[OutputCallback] = None,
    ) -> None:
        """
        Build one target. Returns on success.

        Raises:
          BuildFailure: make exited non-zero
          LaunchError: make could not be started (or the run was cancelled)
        """
        cmd = self.command(target, dependencies)
        if self._cancelled:
            raise LaunchError(cmd, "run cancelled", target=target)

        on_line = on_output or (lambda _line: None)
        proc = self._spawn(cmd, target)
        with self._procs_lock:
            self._procs.add(proc)

        tail: Deque[str] = collections.deque(maxlen=OUTPUT_TAIL)
        tail_lock = threading.Lock()
        readers = [
            threading.Thread(target=_drain, args=(s, on_line, tail, tail_lock), daemon=True)
            for s in (proc.stdout, proc.stderr)
        ]
        for t in readers:
            t.start()

        try:
            # Readers drain both pipes while we wait, so a chatty make never blocks.
            returncode = proc.wait()
            for t in readers:
                t.join()
        finally:
            with self._procs_lock:
                self._procs.discard(proc)

        if returncode != 0:
            raise BuildFailure(target, returncode, list(tail))

    def cancel(self) -> None:
        """Best effort: stop starting new builds and terminate running ones."""
        self._cancelled = True
        with self._procs_lock:
            procs = list(self._procs)
        for proc in procs:
            try:
                proc.terminate()
            except OSError:
                pass

    def dump_database(self) -> str:
        """
        Return make's rule database for the makefile.

        make's exit status is ignored: the database is printed even when the
        default goal would fail.
        """
        cmd = self.database_command()
        try:
            proc = subprocess.run(
                cmd,
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                env={**os.environ, "LC_ALL": "C"},
            )
        except OSError as e:
            raise LaunchError(cmd, e.strerror or str(e)) from e
        return proc.stdout


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_targets(
    graph: Graph,
    requested: Sequence[str],
    runner: MakeRunner,
    *,
    console: Optional[Console] = None,
    max_workers: int | None = None,
) -> BuildReport:
    """
    Build `requested` with one make invocation per needed target.

    Progress is rendered on the console; the returned report holds every
    target's result.
    """
    console = console or get_console()
    scheduler = Scheduler(graph, runner, ConsoleProgress(console), max_workers=max_workers)
    # Planned up front for the task count; build() reuses the same tasks.
    plan = scheduler.plan(requested)
    console.print_run_started(makefile=runner.makefile, targets=requested, task_count=len(plan))
    console.print_debug("make command: " + " ".join(runner.command("<target>")))
    return scheduler.build(requested)
