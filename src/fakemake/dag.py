# dag.py
from __future__ import annotations

import queue
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .errors import CycleError, FakeError, UnknownTargetError
from .model import BuildReport, BuildTask, Graph, TargetName, TaskResult, TaskState, ordered_unique
from .ui.progress import ProgressReporter

# executor(target, dependencies, on_output) -> None; raises BuildFailure / LaunchError.
Executor = Callable[[TargetName, Sequence[TargetName], Callable[[str], None]], None]


def resolve_targets(graph: Graph, targets: Sequence[TargetName]) -> List[TargetName]:
    """
    Turn the command-line target list into the requested set.

    No targets means the default goal (or the first declared target).
    Every requested name must be a target in the graph.
    """
    if not targets:
        default = graph.default_target()
        if default is None:
            raise UnknownTargetError([], message="no targets specified and no makefile targets found")
        targets = [default]

    missing = [t for t in ordered_unique(targets) if t not in graph]
    if missing:
        raise UnknownTargetError(missing)
    return ordered_unique(targets)


class Scheduler:
    """
    Demand-driven, memoized build scheduler for one build invocation.

    - Walks the graph from the requested targets, creating one BuildTask per
      distinct target (register-then-recurse, so shared deps are built once).
    - A task is submitted to the worker pool only once every dependency's
      future has resolved; nothing blocks while waiting on dependencies.
    - A failed dependency skips its dependents; unrelated subtrees keep going.
    """

    def __init__(
        self,
        graph: Graph,
        executor: Executor,
        reporter: Optional[ProgressReporter] = None,
        max_workers: int | None = None,
    ):
        self.graph = graph
        self.executor = executor
        self.reporter = reporter or ProgressReporter()
        self.max_workers = max_workers

        self.tasks: Dict[TargetName, BuildTask] = {}
        self._order: List[BuildTask] = []
        self._lock = threading.Lock()
        self._first_error: Optional[FakeError] = None
        self._fatal_error: Optional[FakeError] = None
        self._aborted = False
        self._pool: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # Graph walk
    # ------------------------------------------------------------------

    def _register(self, target: TargetName) -> BuildTask:
        task = BuildTask(target=target, dependencies=self.graph.dependencies(target))
        self.tasks[target] = task
        return task

    def _visit(self, root: TargetName) -> BuildTask:
        """
        Depth-first walk from `root` with an explicit stack.

        A task is registered before its dependencies are expanded, so a
        diamond reaching the same target from another branch finds it.
        Tasks land in `_order` once all of their dependencies have.
        """
        existing = self.tasks.get(root)
        if existing is not None:
            return existing

        root_task = self._register(root)
        path: List[TargetName] = [root]
        on_path = {root}
        stack = [(root_task, iter(root_task.dependencies))]
        while stack:
            task, deps = stack[-1]
            dep = next(deps, None)
            if dep is None:
                stack.pop()
                path.pop()
                on_path.discard(task.target)
                self._order.append(task)
                continue

            known = self.tasks.get(dep)
            if known is not None:
                if dep in on_path:
                    raise CycleError(path[path.index(dep):] + [dep])
                task.dep_tasks.append(known)
                continue

            child = self._register(dep)
            task.dep_tasks.append(child)
            path.append(dep)
            on_path.add(dep)
            stack.append((child, iter(child.dependencies)))
        return root_task

    def _assign_depths(self, roots: Sequence[TargetName]) -> None:
        # Distance from the nearest requested target.
        seen = set()
        q = deque()
        for r in roots:
            if r not in seen:
                seen.add(r)
                self.tasks[r].depth = 0
                q.append(self.tasks[r])
        while q:
            task = q.popleft()
            for dep in task.dep_tasks:
                if dep.target not in seen:
                    seen.add(dep.target)
                    dep.depth = task.depth + 1
                    q.append(dep)

    def plan(self, requested: Iterable[TargetName]) -> List[BuildTask]:
        """
        Create the tasks needed for `requested`, dependencies first.

        Raises CycleError if the requested part of the graph has a cycle.
        Nothing is executed. Planning is memoized: calling plan() again, or
        build() after plan(), reuses the tasks already created.
        """
        roots = ordered_unique(list(requested))
        for target in roots:
            self._visit(target)
        self._assign_depths(roots)
        return list(self._order)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _record_error(self, error: FakeError) -> None:
        with self._lock:
            if self._first_error is None:
                self._first_error = error
            if error.fatal and self._fatal_error is None:
                self._fatal_error = error

    def abort(self) -> None:
        """Stop launching new builds and ask the executor to stop running ones."""
        with self._lock:
            self._aborted = True
        cancel = getattr(self.executor, "cancel", None)
        if callable(cancel):
            cancel()

    def _complete(self, task: BuildTask, result: TaskResult) -> None:
        task.state = TaskState.COMPLETED
        task.finished_at = time.monotonic()
        try:
            self.reporter.task_finished(result)
        finally:
            # Write-once broadcast to every dependent and to build().
            task.future.set_result(result)

    def _internal_error(self, task: BuildTask, exc: BaseException) -> FakeError:
        error = FakeError(kind="internal error", message=f"{exc.__class__.__name__}: {exc}", target=task.target)
        self._record_error(error)
        self.abort()
        return error

    def _arm(self, task: BuildTask, ready: queue.SimpleQueue) -> None:
        """Queue `task` for build() once all of its dependency futures are done."""
        if not task.dep_tasks:
            ready.put(task)
            return

        remaining = [len(task.dep_tasks)]
        lock = threading.Lock()

        # Runs inside Future.set_result; only hands the task back to build().
        def dep_done(_f: Future) -> None:
            with lock:
                remaining[0] -= 1
                last = remaining[0] == 0
            if last:
                ready.put(task)

        for dep in task.dep_tasks:
            dep.future.add_done_callback(dep_done)

    def _ready(self, task: BuildTask) -> None:
        """Called from build() once every dependency has settled."""
        for dep in task.dep_tasks:
            result = dep.result
            if result is not None and not result.ok:
                self._complete(task, TaskResult(task.target, "skipped", error=result.error))
                return

        with self._lock:
            aborted = self._aborted
        if aborted:
            self._complete(task, TaskResult(task.target, "skipped", error=self._fatal_error))
            return

        assert self._pool is not None
        self._pool.submit(self._run, task).add_done_callback(
            lambda f, task=task: self._check_worker(task, f)
        )

    def _check_worker(self, task: BuildTask, f: Future) -> None:
        # _run settles the task itself; this only covers errors escaping it.
        exc = f.exception()
        if exc is not None and not task.future.done():
            error = self._internal_error(task, exc)
            task.future.set_result(TaskResult(task.target, "failed", error=error))

    def _run(self, task: BuildTask) -> None:
        with self._lock:
            aborted = self._aborted
        if aborted:
            self._complete(task, TaskResult(task.target, "skipped", error=self._fatal_error))
            return

        task.state = TaskState.RUNNING
        task.started_at = time.monotonic()

        def on_output(line: str) -> None:
            self.reporter.task_output(task.target, line)

        try:
            self.reporter.task_started(task.target)
            self.executor(task.target, task.dependencies, on_output)
        except FakeError as e:
            self._record_error(e)
            if e.fatal:
                self.abort()
            result = TaskResult(task.target, "failed", error=e, elapsed=time.monotonic() - task.started_at)
        except Exception as e:
            error = self._internal_error(task, e)
            result = TaskResult(task.target, "failed", error=error, elapsed=time.monotonic() - task.started_at)
        else:
            result = TaskResult(task.target, "ok", elapsed=time.monotonic() - task.started_at)
        self._complete(task, result)

    def build(self, requested: Iterable[TargetName]) -> BuildReport:
        """
        Build `requested` and everything they depend on.

        Returns once every requested target has settled, successfully or not.
        Tasks whose dependencies have settled are handed back to this thread
        through a queue, so a long chain of skipped dependents is settled in
        a loop rather than by nested Future callbacks.
        """
        roots = ordered_unique(list(requested))
        order = self.plan(roots)
        report = BuildReport(requested=roots)
        if not order:
            return report

        for task in order:
            self.reporter.task_queued(task.target, task.depth)

        # Holds ready tasks, or None when a requested target settles.
        ready: queue.SimpleQueue = queue.SimpleQueue()
        root_futures = [self.tasks[t].future for t in roots]
        for f in root_futures:
            f.add_done_callback(lambda _f: ready.put(None))

        workers = self.max_workers or len(order)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fake") as pool:
            self._pool = pool
            # Dependencies first, so a ready task never waits on an unarmed one.
            for task in order:
                self._arm(task, ready)
            try:
                while not all(f.done() for f in root_futures):
                    task = ready.get()
                    if task is None or task.done:
                        continue
                    try:
                        self._ready(task)
                    except Exception as e:
                        error = self._internal_error(task, e)
                        if not task.done:
                            task.future.set_result(TaskResult(task.target, "failed", error=error))
            except KeyboardInterrupt:
                self.abort()
                raise
        self._pool = None

        for task in order:
            if task.done:
                report.results[task.target] = task.result
        report.first_error = self._first_error
        report.fatal_error = self._fatal_error
        return report
