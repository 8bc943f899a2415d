# conftest.py
from __future__ import annotations

import json
import shlex
import sys
from pathlib import Path
from typing import Dict, List

import pytest

# Stand-in for make: understands "-f FILE TARGET -o DEP..." and
# "--print-data-base", logs every build to calls.jsonl next to itself and
# reads its behaviour from config.json in the same directory.
FAKE_MAKE = r'''
import json
import os
import sys
import time

here = os.path.dirname(os.path.abspath(__file__))
try:
    with open(os.path.join(here, "config.json")) as f:
        config = json.load(f)
except FileNotFoundError:
    config = {}

args = sys.argv[1:]
makefile, target, hints, flags = None, None, [], []
i = 0
while i < len(args):
    a = args[i]
    if a in ("-f", "-o"):
        if a == "-f":
            makefile = args[i + 1]
        else:
            hints.append(args[i + 1])
        i += 2
        continue
    if a.startswith("-"):
        flags.append(a)
    else:
        target = a
    i += 1

if "--print-data-base" in flags:
    sys.stdout.write(config.get("database", ""))
    sys.exit(config.get("database_status", 0))


def log(event):
    with open(os.path.join(here, "calls.jsonl"), "a") as f:
        f.write(json.dumps({"event": event, "target": target, "hints": hints, "makefile": makefile}) + "\n")


log("start")
time.sleep(config.get("sleep", {}).get(target, 0))
for n in range(config.get("lines", 1)):
    print(f"building {target} {n}")
    print(f"note {target} {n}", file=sys.stderr)
    print("   ")
sys.stdout.flush()
log("end")
sys.exit(2 if target in config.get("fail", []) else 0)
'''


class FakeMake:
    def __init__(self, directory: Path):
        self.directory = directory
        self.script = directory / "fake_make.py"
        self.script.write_text(FAKE_MAKE, encoding="utf-8")
        self.log = directory / "calls.jsonl"

    @property
    def command(self) -> List[str]:
        return [sys.executable, str(self.script)]

    @property
    def cmdline(self) -> str:
        return " ".join(shlex.quote(part) for part in self.command)

    def configure(self, **config) -> None:
        (self.directory / "config.json").write_text(json.dumps(config), encoding="utf-8")

    def calls(self) -> List[Dict]:
        if not self.log.exists():
            return []
        return [json.loads(line) for line in self.log.read_text(encoding="utf-8").splitlines() if line]

    def built(self) -> List[str]:
        return [c["target"] for c in self.calls() if c["event"] == "start"]

    def index(self, event: str, target: str) -> int:
        for i, c in enumerate(self.calls()):
            if c["event"] == event and c["target"] == target:
                return i
        raise AssertionError(f"no {event} event for {target}")


@pytest.fixture
def fake_make(tmp_path: Path) -> FakeMake:
    tool_dir = tmp_path / "tool"
    tool_dir.mkdir()
    return FakeMake(tool_dir)


@pytest.fixture
def makefile(tmp_path: Path):
    def write(text: str, name: str = "Makefile") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return write

