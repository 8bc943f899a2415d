# model.py
from __future__ import annotations

import enum
import json
from concurrent.futures import Future
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import FakeError

# Target names are plain strings; equality is exact and case-sensitive.
TargetName = str


@dataclass(frozen=True)
class Graph:
    """
    Target -> dependencies mapping recovered from a makefile.

    `edges` keeps declaration order: the first key is the implicit default
    target, and each dependency tuple is passed to make in that order.
    A dependency does not have to be a key (source files usually aren't).
    """
    edges: Mapping[TargetName, Tuple[TargetName, ...]] = field(default_factory=dict)
    default_goal: Optional[TargetName] = None

    def __post_init__(self) -> None:
        # Read-only view over a private copy; callers can't mutate the graph.
        edges = {t: tuple(deps) for t, deps in self.edges.items()}
        object.__setattr__(self, "edges", MappingProxyType(edges))

    def __contains__(self, target: object) -> bool:
        return target in self.edges

    def __len__(self) -> int:
        return len(self.edges)

    @property
    def targets(self) -> List[TargetName]:
        return list(self.edges)

    def dependencies(self, target: TargetName) -> Tuple[TargetName, ...]:
        """Declared dependencies, or () for names that are not targets."""
        return tuple(self.edges.get(target, ()))

    def default_target(self) -> Optional[TargetName]:
        """
        The target built when none is requested: the .DEFAULT_GOAL, else
        the first declared target. Like make, special targets (".PHONY",
        ".SUFFIXES", ...) never qualify unless they contain a slash.
        """
        if self.default_goal:
            return self.default_goal
        for target in self.edges:
            if not target.startswith(".") or "/" in target:
                return target
        return None

    # ---- JSON shape: {"edges": {target: [deps...]}, "default_goal": target|null} ----
    def to_dict(self) -> Dict[str, Any]:
        return {
            "edges": {t: list(deps) for t, deps in self.edges.items()},
            "default_goal": self.default_goal,
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Graph:
        edges = {str(t): tuple(str(d) for d in deps) for t, deps in (data.get("edges") or {}).items()}
        return cls(edges=edges, default_goal=data.get("default_goal"))

    @classmethod
    def from_json(cls, text: str) -> Graph:
        return cls.from_dict(json.loads(text))


class TaskState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one build task: "ok", "failed" (make failed) or "skipped" (a dependency failed)."""
    target: TargetName
    status: str
    error: Optional[FakeError] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass(eq=False)
class BuildTask:
    """
    Runtime unit for "build this one target", created once per target per build.

    `future` is the completion signal: it is resolved exactly once with the
    task's TaskResult, and every dependent (plus the top-level caller) waits on
    the same object.
    """
    target: TargetName
    dependencies: Tuple[TargetName, ...]
    depth: int = 0
    state: TaskState = TaskState.PENDING
    dep_tasks: List[BuildTask] = field(default_factory=list)
    future: Future = field(default_factory=Future)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def done(self) -> bool:
        return self.future.done()

    @property
    def result(self) -> Optional[TaskResult]:
        if not self.future.done():
            return None
        return self.future.result()


@dataclass
class BuildReport:
    """Aggregate result of Scheduler.build()."""
    requested: List[TargetName]
    results: Dict[TargetName, TaskResult] = field(default_factory=dict)
    first_error: Optional[FakeError] = None
    # Set when the run was aborted (make could not be launched).
    fatal_error: Optional[FakeError] = None

    @property
    def ok(self) -> bool:
        return all(
            (r := self.results.get(t)) is not None and r.ok
            for t in self.requested
        )

    @property
    def failed(self) -> List[TaskResult]:
        return [r for r in self.results.values() if r.status == "failed"]

    def statuses(self) -> Dict[TargetName, str]:
        return {t: r.status for t, r in self.results.items()}


def ordered_unique(names: Sequence[TargetName]) -> List[TargetName]:
    seen = set()
    out: List[TargetName] = []
    for n in names:
        if n not in seen:
            seen.add(n)
            out.append(n)
    return out
