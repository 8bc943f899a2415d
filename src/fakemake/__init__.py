from .model import Graph, BuildTask, BuildReport, TaskResult
from .parse import parse_makefile, parse_database, load_graph
from .dag import Scheduler, resolve_targets
from .runner import MakeRunner, run_targets

__version__ = "0.1.0"

__all__ = [
    "Graph", "BuildTask", "BuildReport", "TaskResult",
    "parse_makefile", "parse_database", "load_graph",
    "Scheduler", "resolve_targets",
    "MakeRunner", "run_targets",
]
