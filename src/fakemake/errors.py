# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class FakeError(Exception):
    """
    Structured error with enough context for:
      - a one-line CLI diagnostic
      - the per-target results summary
      - debugging without full tracebacks
    """
    kind: str
    message: str
    target: Optional[str] = None
    details: Dict[str, object] = field(default_factory=dict)

    # Fatal errors end the run; non-fatal ones stay local to a subtree.
    fatal = True

    def __str__(self) -> str:
        parts = [f"{self.kind}: {self.message}"]
        if self.target:
            parts.append(f"target={self.target}")
        for k, v in self.details.items():
            parts.append(f"{k}={v}")
        return " ".join(parts)


class ConfigError(FakeError):
    """Makefile missing or unreadable."""

    def __init__(self, message: str, **details: object):
        super().__init__(kind="config error", message=message, details=dict(details))


class MakefileSyntaxError(FakeError):
    """The parser could not consume the whole input."""

    def __init__(self, message: str, line: int, text: str):
        super().__init__(
            kind="invalid build file",
            message=message,
            details={"line": line, "text": repr(text)},
        )
        self.line = line
        self.text = text


class UnknownTargetError(FakeError):
    def __init__(self, targets: List[str], message: str | None = None):
        names = ", ".join(targets)
        super().__init__(
            kind="unknown target",
            message=message or f"no rule to make target(s): {names}",
        )
        self.targets = list(targets)


class CycleError(FakeError):
    def __init__(self, cycle: List[str]):
        super().__init__(
            kind="dependency cycle",
            message=" -> ".join(cycle),
            target=cycle[0],
        )
        self.cycle = list(cycle)


class BuildFailure(FakeError):
    """make exited non-zero for one target. Recovered into that target's result."""

    fatal = False

    def __init__(self, target: str, exit_code: int, output: List[str] | None = None):
        super().__init__(
            kind="build failed",
            message=f"make exited with status {exit_code}",
            target=target,
        )
        self.exit_code = exit_code
        self.output = list(output or [])


class LaunchError(FakeError):
    """make could not be spawned at all."""

    def __init__(self, command: List[str], reason: str, target: str | None = None):
        super().__init__(
            kind="launch failed",
            message=f"could not run {command[0]!r}: {reason}",
            target=target,
        )
        self.command = list(command)
