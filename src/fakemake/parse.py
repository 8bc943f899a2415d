# parse.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import ConfigError, MakefileSyntaxError
from .model import Graph, TargetName

# ---------------------------------------------------------------------
# Line grammar
# ---------------------------------------------------------------------
# A makefile is a sequence of lines separated by "\n" or "\r\n":
#
#   target line   <name>: dep dep | dep \
#                     dep   # comment
#   goal line     .DEFAULT_GOAL := <name>
#   anything else ignored
#
# Only lines that start like a target header are parsed strictly. Names are
# anything but whitespace, ":", "#", "|" and a backslash that starts a line
# continuation, so paths like build/out.o are valid targets.
# ---------------------------------------------------------------------

MAKEFILE_NAMES = ("GNUmakefile", "makefile", "Makefile")

_NAME = r"(?:[^\s:#|\\]|\\(?!\r?\n))+"

_HEADER_RE = re.compile(rf"({_NAME})(::?)(?![=:])")
_GOAL_RE = re.compile(
    rf"\.DEFAULT_GOAL[ \t]*(?::{{1,2}})?=[ \t]*({_NAME})?[ \t]*(?:#[^\n]*)?(?=\r?\n|\Z)"
)
_SEP_RE = re.compile(r"(?:[ \t|]|\\\r?\n)*")
_TOKEN_RE = re.compile(_NAME)
_TRAILER_RE = re.compile(r"[ \t]*(?:#[^\n]*)?")
_NEWLINE_RE = re.compile(r"\r?\n")
_DEFINE_RE = re.compile(r"(?:(?:override|export|private)[ \t]+)*define\b")
_ENDEF_RE = re.compile(r"endef\b")


@dataclass(frozen=True)
class Rule:
    """One target declaration, as written (before any merging)."""
    target: TargetName
    dependencies: Tuple[TargetName, ...]
    line: int
    # The physical line just before the declaration; the rule database uses
    # it to label entries ("# Not a target:").
    previous: str = ""


class _Lines:
    """Cursor over the text, one logical line per step."""

    def __init__(self, text: str, strict: bool = True):
        self.text = text
        self.strict = strict
        self.pos = 0
        self.default_goal: Optional[TargetName] = None
        self._previous = ""
        self._in_define = False

    def line_number(self, pos: int) -> int:
        return self.text.count("\n", 0, pos) + 1

    def _end_of_line(self, pos: int) -> int:
        eol = self.text.find("\n", pos)
        return len(self.text) if eol < 0 else eol

    def _physical_line(self, pos: int) -> str:
        return self.text[pos:self._end_of_line(pos)].rstrip("\r")

    def _fail(self, start: int, message: str) -> MakefileSyntaxError:
        return MakefileSyntaxError(message, line=self.line_number(start), text=self._physical_line(start))

    def rules(self) -> Iterator[Rule]:
        text = self.text
        while True:
            start = self.pos
            rule = self._parse_line(start)
            if rule is not None:
                yield rule
            self._previous = text[start:self.pos].rstrip("\r")

            if self.pos >= len(text):
                return
            m = _NEWLINE_RE.match(text, self.pos)
            if not m:
                raise self._fail(start, "unexpected text after target declaration")
            self.pos = m.end()

    def _skip_line(self, start: int) -> None:
        self.pos = self._end_of_line(start)

    def _parse_line(self, start: int) -> Optional[Rule]:
        text = self.text

        if self._in_define:
            if _ENDEF_RE.match(text, start):
                self._in_define = False
            self._skip_line(start)
            return None
        if _DEFINE_RE.match(text, start):
            self._in_define = True
            self._skip_line(start)
            return None

        m = _GOAL_RE.match(text, start)
        if m:
            self.default_goal = m.group(1)
            self.pos = m.end()
            return None

        header = _HEADER_RE.match(text, start)
        if not header:
            self._skip_line(start)
            return None

        # "prog: CFLAGS += -g" is a target-specific variable, not a rule.
        rest = text[header.end():self._end_of_line(start)].split("#", 1)[0]
        if "=" in rest:
            self._skip_line(start)
            return None

        pos = header.end()
        deps: List[TargetName] = []
        while True:
            sep = _SEP_RE.match(text, pos)
            token = _TOKEN_RE.match(text, sep.end())
            if not token:
                break
            deps.append(token.group())
            pos = token.end()
        pos = _TRAILER_RE.match(text, pos).end()

        if pos < len(text) and not _NEWLINE_RE.match(text, pos):
            if self.strict:
                raise self._fail(start, f"cannot parse declaration of {header.group(1)!r}")
            self._skip_line(pos)
            return None

        self.pos = pos
        return Rule(
            target=header.group(1),
            dependencies=tuple(deps),
            line=self.line_number(start),
            previous=self._previous,
        )


def iter_rules(text: str, strict: bool = True) -> Tuple[List[Rule], Optional[TargetName]]:
    """
    Parse every target declaration in `text`.

    Returns:
      (rules in source order, default goal or None)

    Raises:
      MakefileSyntaxError if a target header line cannot be parsed (strict mode).
    """
    lines = _Lines(text, strict=strict)
    rules = list(lines.rules())
    return rules, lines.default_goal


def _merge(rules: List[Rule]) -> Dict[TargetName, Tuple[TargetName, ...]]:
    # Later declarations replace earlier ones; the key keeps its first position.
    edges: Dict[TargetName, Tuple[TargetName, ...]] = {}
    for rule in rules:
        edges[rule.target] = rule.dependencies
    return edges


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def parse_makefile(text: str) -> Graph:
    """Build a Graph from makefile source. Raises MakefileSyntaxError."""
    rules, default_goal = iter_rules(text)
    return Graph(edges=_merge(rules), default_goal=default_goal)


def parse_database(text: str, makefile: str | Path | None = None) -> Graph:
    """
    Build a Graph from `make --print-data-base --dry-run` output.

    The dump also lists make's built-in and internal rules, so this drops:
      - internal targets (names starting with ".")
      - pattern rules (names containing "%")
      - entries the dump labels "# Not a target:"
      - the makefile itself, which make lists as a remakeable file
    """
    rules, default_goal = iter_rules(text, strict=False)

    own_paths = set()
    if makefile is not None:
        own_paths = {str(makefile), os.path.normpath(str(makefile))}

    kept: List[Rule] = []
    for rule in rules:
        name = rule.target
        if name.startswith(".") or "%" in name or name in own_paths:
            continue
        if rule.previous.strip() == "# Not a target:":
            continue
        deps = tuple(d for d in rule.dependencies if d not in own_paths)
        kept.append(Rule(target=name, dependencies=deps, line=rule.line, previous=rule.previous))

    return Graph(edges=_merge(kept), default_goal=default_goal)


def find_makefile(directory: str | Path = ".") -> Path:
    """Return the makefile make itself would pick in `directory`."""
    base = Path(directory)
    for name in MAKEFILE_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    raise ConfigError(
        "no makefile found",
        directory=str(base.resolve()),
        looked_for="/".join(MAKEFILE_NAMES),
    )


def load_graph(path: str | Path) -> Graph:
    """Read and parse a makefile. Raises ConfigError or MakefileSyntaxError."""
    p = Path(path)
    try:
        # make itself does not decode the file; undecodable bytes round-trip.
        text = p.read_text(encoding="utf-8", errors="surrogateescape")
    except OSError as e:
        raise ConfigError(f"could not read makefile {str(p)!r}", reason=e.strerror or str(e)) from e
    return parse_makefile(text)
