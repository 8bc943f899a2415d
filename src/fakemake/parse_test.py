from __future__ import annotations

import pytest

from fakemake.errors import ConfigError, MakefileSyntaxError
from fakemake.parse import find_makefile, load_graph, parse_database, parse_makefile


def edges(text: str) -> dict:
    return parse_makefile(text).to_dict()["edges"]


def test_targets_and_dependencies():
    assert edges("A: B C\nB:\nC:\n") == {"A": ["B", "C"], "B": [], "C": []}


def test_comments_and_trailing_whitespace_are_not_part_of_names():
    text = "A: B C   # builds a\nB: # nothing here\t\nC:D#tight\nE: F \t \n"
    assert edges(text) == {"A": ["B", "C"], "B": [], "C": ["D"], "E": ["F"]}


def test_line_continuation_joins_declaration():
    assert edges("A: B \\\n C\n") == edges("A: B C\n")
    assert edges("A: B \\\r\n  C \\\r\n\tD\r\n") == {"A": ["B", "C", "D"]}


def test_crlf_line_endings():
    assert edges("A: B C\r\nB:\r\n# comment\r\nC: # c\r\n") == {"A": ["B", "C"], "B": [], "C": []}


def test_order_only_marker_is_parsed_like_a_separator():
    assert edges("A: B | C\nD: |E\n") == {"A": ["B", "C"], "D": ["E"]}


def test_default_goal_directive():
    graph = parse_makefile(".DEFAULT_GOAL := B\nA: B\nB:\n")
    assert graph.default_goal == "B"
    assert graph.default_target() == "B"

    graph = parse_makefile("A: B\nB:\n.DEFAULT_GOAL = B  # late\n")
    assert graph.default_target() == "B"


def test_first_target_is_default_without_directive():
    graph = parse_makefile("A: B\nB:\n")
    assert graph.default_goal is None
    assert graph.default_target() == "A"


def test_special_targets_are_not_the_implicit_default():
    graph = parse_makefile(".PHONY: all\nall: x\n")
    assert graph.default_target() == "all"


def test_redeclaration_replaces_dependencies():
    graph = parse_makefile("A: B\nB:\nA: C\n")
    assert graph.dependencies("A") == ("C",)
    assert graph.targets == ["A", "B"]


def test_other_lines_are_ignored():
    text = (
        "CC = gcc\n"
        "SRCS := a.c b.c\n"
        "include rules.mk\n"
        "ifeq ($(CC),gcc)\n"
        "endif\n"
        "\n"
        "all: app\n"
        "\techo building: app\n"
        "app: main.o\n"
        "\t$(CC) -o $@ $^\n"
    )
    assert edges(text) == {"all": ["app"], "app": ["main.o"]}


def test_assignments_and_target_variables_are_not_rules():
    text = "FOO:=bar\nBAR::=baz\nprog: CFLAGS += -g\nprog: main.o\n"
    assert edges(text) == {"prog": ["main.o"]}


def test_double_colon_rule():
    assert edges("clean:: tmp\n") == {"clean": ["tmp"]}


def test_define_blocks_are_skipped():
    text = "define RULE\n$(1): $(2) : odd\nendef\nall: x\n"
    assert edges(text) == {"all": ["x"]}


def test_permissive_target_names():
    assert edges("build/out.o: src/a.c include/a-b_c.h\n") == {
        "build/out.o": ["src/a.c", "include/a-b_c.h"],
    }


def test_empty_input_and_missing_final_newline():
    assert len(parse_makefile("")) == 0
    assert parse_makefile("").default_target() is None
    assert edges("A: B") == {"A": ["B"]}


def test_malformed_declaration_fails_whole_parse():
    with pytest.raises(MakefileSyntaxError) as exc:
        parse_makefile("ok: x\n\nbad: y z :\nlater: w\n")
    assert exc.value.line == 3
    assert "bad: y z :" in exc.value.text
    assert exc.value.kind == "invalid build file"


def test_static_pattern_rule_is_rejected():
    with pytest.raises(MakefileSyntaxError):
        parse_makefile("objs: %.o: %.c\n")


def test_load_graph(tmp_path):
    path = tmp_path / "Makefile"
    path.write_text("all: a\na:\n", encoding="utf-8")
    assert load_graph(path).targets == ["all", "a"]


def test_load_graph_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_graph(tmp_path / "nope.mk")


def test_find_makefile_uses_make_search_order(tmp_path):
    with pytest.raises(ConfigError):
        find_makefile(tmp_path)
    (tmp_path / "Makefile").write_text("", encoding="utf-8")
    assert find_makefile(tmp_path).name == "Makefile"
    (tmp_path / "GNUmakefile").write_text("", encoding="utf-8")
    assert find_makefile(tmp_path).name == "GNUmakefile"


DATABASE = """\
# GNU Make 4.3
# Built for x86_64-pc-linux-gnu

# Make data base, printed on Mon Oct 19 09:00:00 2026

# Variables

# automatic
<D = $(patsubst %/,%,$(dir $<))
# makefile
.DEFAULT_GOAL := all
# makefile (from 'Makefile', line 1)
CC = cc
# default
MAKEFILE_LIST :=  Makefile

# Implicit Rules

%.o: %.c
#  recipe to execute (built-in):
\t$(COMPILE.c) $(OUTPUT_OPTION) $<

%: %.o
#  recipe to execute (built-in):
\t$(LINK.o) $^ $(LOADLIBES) $(LDLIBS) -o $@

# Files

# Not a target:
Makefile:
#  Implicit rule search has been done.

docs:
#  Phony target (prerequisite of .PHONY).

# Not a target:
main.c:
#  Implicit rule search has not been done.

app: main.o util.o
#  recipe to execute (from 'Makefile', line 6):
\t$(CC) -o $@ $^

.PHONY: all docs

all: app docs
#  Phony target (prerequisite of .PHONY).

main.o: main.c Makefile
#  Implicit/static pattern stem: 'main'

weird: a : b

.SUFFIXES: .out .a .o .c
"""


def test_parse_database_prunes_internal_entries():
    graph = parse_database(DATABASE, "Makefile")
    assert graph.to_dict() == {
        "edges": {
            "docs": [],
            "app": ["main.o", "util.o"],
            "all": ["app", "docs"],
            "main.o": ["main.c"],
        },
        "default_goal": "all",
    }
    assert graph.default_target() == "all"


def test_parse_database_keeps_makefile_named_targets_when_path_differs():
    graph = parse_database("Makefile: gen\ngen:\n", "build/other.mk")
    assert graph.dependencies("Makefile") == ("gen",)


def test_load_graph_accepts_bytes_that_are_not_utf8(tmp_path):
    path = tmp_path / "Makefile"
    path.write_bytes(b"# Auteur: J\xe9r\xf4me\nall: app\napp:\n")
    graph = load_graph(path)
    assert graph.dependencies("all") == ("app",)
    assert graph.default_target() == "all"
