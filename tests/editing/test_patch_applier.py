"""Tests for the PatchApplier."""

import os

import pytest

from chunkpress.editing.models import NewFile, Part, PatchResult, UpdatedFile
from chunkpress.editing.patch_parser import parse_patch
from chunkpress.editing.patch_applier import (
    PatchApplier, merge_parts, resolve_path, staging_path,
)


def _numbered(n: int) -> str:
    return "".join(f"line {i}\n" for i in range(1, n + 1))


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _write(path, content):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def _read(path):
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


class TestMergeParts:
    def test_replace_middle_part(self):
        merged = merge_parts(_numbered(120), [Part(2, "NEW")], 50)

        lines = merged.split("\n")
        assert lines[:50] == [f"line {i}" for i in range(1, 51)]
        assert lines[50] == "NEW"
        assert lines[51:71] == [f"line {i}" for i in range(101, 121)]
        assert merged.endswith("line 120\n")

    def test_out_of_range_ids_ignored(self):
        content = _numbered(120)
        merged = merge_parts(content, [Part(0, "zero"), Part(4, "four")], 50)
        assert merged == content

    def test_replacement_may_change_line_count(self):
        merged = merge_parts("a\nb\nc\n", [Part(2, "x\ny\nz")], 1)
        assert merged == "a\nx\ny\nz\nc\n"

    def test_last_part_without_trailing_newline(self):
        merged = merge_parts("a\nb", [Part(2, "B")], 1)
        assert merged == "a\nB"

    def test_crlf_preserved_outside_patched_part(self):
        merged = merge_parts("a\r\nb\r\nc\r\n", [Part(2, "B\r")], 1)
        assert merged == "a\r\nB\r\nc\r\n"


class TestResolvePath:
    def test_exact(self):
        assert resolve_path("src/a.py", ["src/a.py", "b.py"]) == "src/a.py"

    def test_suffix(self):
        assert resolve_path("a.py", ["project/src/a.py"]) == "project/src/a.py"

    def test_normalized_exact(self):
        assert resolve_path("./src/a.py", ["src/a.py"]) == "src/a.py"

    def test_ambiguous_suffix_takes_first(self):
        known = ["x/util.py", "y/util.py"]
        assert resolve_path("util.py", known) == "x/util.py"

    def test_no_match(self):
        assert resolve_path("nope.py", ["a.py"]) is None


class TestApplyAuto:
    def test_patch_overwrites_original(self, workdir):
        _write("src/a.py", _numbered(120))
        patch = PatchResult(updated=[UpdatedFile("src/a.py", [Part(2, "NEW")])])

        result = PatchApplier(50).apply(patch, ["src/a.py"], "press.output",
                                        auto=True)

        assert result.modified == ["src/a.py"]
        content = _read("src/a.py")
        assert content.split("\n")[50] == "NEW"
        assert content.count("\n") == 71

    def test_suffix_path_from_model(self, workdir):
        _write("project/src/a.py", "one\ntwo\n")
        patch = PatchResult(updated=[UpdatedFile("a.py", [Part(1, "ONE")])])

        result = PatchApplier(1).apply(patch, ["project/src/a.py"],
                                       "press.output", auto=True)

        assert result.modified == ["project/src/a.py"]
        assert _read("project/src/a.py") == "ONE\ntwo\n"

    def test_unresolved_path_does_not_stop_others(self, workdir):
        _write("a.py", "a\n")
        patch = PatchResult(updated=[
            UpdatedFile("missing.py", [Part(1, "x")]),
            UpdatedFile("a.py", [Part(1, "A")]),
        ])

        result = PatchApplier(10).apply(patch, ["a.py"], "press.output", auto=True)

        assert result.unresolved == ["missing.py"]
        assert result.modified == ["a.py"]
        assert _read("a.py") == "A\n"

    def test_unreadable_original_recorded_as_failed(self, workdir):
        patch = PatchResult(updated=[UpdatedFile("gone.py", [Part(1, "x")])])
        result = PatchApplier(10).apply(patch, ["gone.py"], "press.output",
                                        auto=True)
        assert "gone.py" in result.failed
        assert result.modified == []

    def test_only_bad_ids_rewrites_unchanged(self, workdir):
        _write("a.py", "keep\n")
        patch = PatchResult(updated=[UpdatedFile("a.py", [Part(0, "x")])])

        PatchApplier(10).apply(patch, ["a.py"], "press.output", auto=True)
        assert _read("a.py") == "keep\n"

    def test_undecodable_bytes_in_untouched_part_survive(self, workdir):
        with open("latin.py", "wb") as f:
            f.write(b"# caf\xe9\nx = 1\n")
        patch = PatchResult(updated=[UpdatedFile("latin.py", [Part(2, "x = 2")])])

        result = PatchApplier(1).apply(patch, ["latin.py"], "press.output",
                                       auto=True)

        assert result.modified == ["latin.py"]
        with open("latin.py", "rb") as f:
            assert f.read() == b"# caf\xe9\nx = 2\n"

    def test_blocks_resolving_to_same_file_are_combined(self, workdir):
        _write("src/a.py", "one\ntwo\n")
        patch = PatchResult(updated=[
            UpdatedFile("src/a.py", [Part(1, "ONE")]),
            UpdatedFile("a.py", [Part(2, "TWO")]),
        ])

        result = PatchApplier(1).apply(patch, ["src/a.py"], "press.output",
                                       auto=True)

        assert result.modified == ["src/a.py"]
        assert _read("src/a.py") == "ONE\nTWO\n"

    def test_later_block_wins_for_same_part(self, workdir):
        _write("src/a.py", "one\n")
        patch = PatchResult(updated=[
            UpdatedFile("src/a.py", [Part(1, "first")]),
            UpdatedFile("a.py", [Part(1, "second")]),
        ])

        PatchApplier(1).apply(patch, ["src/a.py"], "press.output", auto=True)
        assert _read("src/a.py") == "second\n"

    def test_unwrapped_markup_applied_verbatim(self, workdir):
        _write("a.html", "<div>old</div>\n<p>keep</p>\n")
        patch = parse_patch(
            '<file path="a.html"><part id="1"><div>new</div></part></file>')

        PatchApplier(1).apply(patch, ["a.html"], "press.output", auto=True)
        assert _read("a.html") == "<div>new</div>\n<p>keep</p>\n"


class TestApplyStaged:
    def test_original_untouched(self, workdir):
        _write("src/a.py", "one\ntwo\n")
        patch = PatchResult(updated=[UpdatedFile("src/a.py", [Part(2, "TWO")])])

        result = PatchApplier(1).apply(patch, ["src/a.py"], "press.output")

        staged = staging_path(os.path.join("press.output", "code"), "src/a.py")
        assert result.modified == [staged]
        assert staged == os.path.join("press.output", "code", "src", "a.py")
        assert _read(staged) == "one\nTWO\n"
        assert _read("src/a.py") == "one\ntwo\n"


class TestNewFiles:
    def test_new_file_creates_parents(self, workdir):
        patch = PatchResult(created=[NewFile("pkg/sub/new.py", "print(1)\n")])

        result = PatchApplier(10).apply(patch, [], "press.output")

        assert result.created == ["pkg/sub/new.py"]
        assert _read("pkg/sub/new.py") == "print(1)\n"

    def test_plan_splits_new_and_existing_targets(self, workdir):
        _write("a.py", "a\n")
        patch = PatchResult(
            updated=[UpdatedFile("a.py", [Part(1, "A")])],
            created=[NewFile("b.py", "b")],
        )

        plan = PatchApplier(10).plan(patch, ["a.py"], "press.output", auto=True)

        assert plan.existing_targets() == ["a.py"]
        assert plan.new_targets() == ["b.py"]
        assert not os.path.exists("b.py")
        assert _read("a.py") == "a\n"


class TestFreeText:
    def test_written_to_response_file(self, workdir):
        patch = PatchResult(free_text="Renamed the helper.")
        result = PatchApplier(10).apply(patch, [], "press.output")

        assert result.free_text_path == os.path.join("press.output", "response.txt")
        assert _read(result.free_text_path) == "Renamed the helper."

    def test_blank_text_not_written(self, workdir):
        result = PatchApplier(10).apply(PatchResult(free_text="  \n"), [],
                                        "press.output")
        assert result.free_text_path is None
        assert not os.path.exists(os.path.join("press.output", "response.txt"))
