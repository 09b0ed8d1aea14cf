"""Tests for the chunker."""

import json
import os

import pytest

from chunkpress.editing.chunker import (
    chunk_file, chunk_files, chunk_text, collect_files, format_chunks,
    reconstruct,
)
from chunkpress.errors import FileTooLarge


def _numbered(n: int) -> str:
    return "".join(f"line {i}\n" for i in range(1, n + 1))


class TestChunkText:
    def test_120_lines_in_parts_of_50(self):
        chunked = chunk_text("a.py", _numbered(120), 50)

        assert [p.part_id for p in chunked.parts] == [1, 2, 3]
        sizes = [len(p.content.split("\n")) for p in chunked.parts]
        assert sizes == [50, 50, 20]
        assert chunked.parts[1].content.startswith("line 51\n")
        assert chunked.parts[1].content.endswith("line 100")

    @pytest.mark.parametrize("content", [
        _numbered(120),
        "no trailing newline\nsecond",
        "crlf\r\nlines\r\n",
        "\n\nblank lines\n\n",
        "single",
        "",
    ])
    @pytest.mark.parametrize("chunk_size", [1, 3, 50])
    def test_round_trip(self, content, chunk_size):
        assert reconstruct(chunk_text("f", content, chunk_size)) == content

    def test_zero_chunk_size_is_single_part(self):
        content = _numbered(7)
        chunked = chunk_text("f", content, 0)

        assert len(chunked.parts) == 1
        assert chunked.parts[0].part_id == 1
        assert chunked.parts[0].content == content.rstrip("\n")
        assert reconstruct(chunked) == content

    def test_zero_chunk_size_empty_file(self):
        chunked = chunk_text("f", "", 0)
        assert len(chunked.parts) == 1
        assert reconstruct(chunked) == ""

    def test_empty_file_has_no_parts(self):
        assert chunk_text("f", "", 10).parts == []

    def test_negative_chunk_size_rejected(self):
        with pytest.raises(ValueError):
            chunk_text("f", "x", -1)

    def test_deterministic(self):
        content = _numbered(33)
        first = chunk_text("f", content, 7)
        second = chunk_text("f", content, 7)
        assert first == second

    def test_total_parts(self):
        assert chunk_text("f", _numbered(10), 3).total_parts == 4


class TestChunkFile:
    def test_reads_from_disk(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text(_numbered(5), encoding="utf-8")

        chunked = chunk_file(str(path), 2)
        assert chunked.file_path == str(path)
        assert chunked.part_count == 3

    def test_crlf_preserved(self, tmp_path):
        path = tmp_path / "win.txt"
        path.write_bytes(b"a\r\nb\r\n")

        chunked = chunk_file(str(path), 1)
        assert chunked.parts[0].content == "a\r"
        assert reconstruct(chunked) == "a\r\nb\r\n"

    def test_non_utf8_bytes_round_trip(self, tmp_path):
        path = tmp_path / "latin.txt"
        raw = b"caf\xe9\nna\xefve\n"
        path.write_bytes(raw)

        chunked = chunk_file(str(path), 1)
        assert reconstruct(chunked).encode("utf-8", "surrogateescape") == raw

    def test_file_too_large(self, tmp_path):
        path = tmp_path / "big.txt"
        path.write_text("x" * 100, encoding="utf-8")

        with pytest.raises(FileTooLarge) as excinfo:
            chunk_file(str(path), 10, max_size=50)
        assert excinfo.value.size == 100
        assert "big.txt" in str(excinfo.value)

    def test_missing_file_raises_oserror(self, tmp_path):
        with pytest.raises(OSError):
            chunk_file(str(tmp_path / "missing.txt"), 10)

    def test_chunk_files_skips_large_files(self, tmp_path):
        small = tmp_path / "small.txt"
        small.write_text("ok\n", encoding="utf-8")
        big = tmp_path / "big.txt"
        big.write_text("x" * 100, encoding="utf-8")

        chunked, skipped = chunk_files([str(small), str(big)], 10, max_size=50)
        assert [c.file_path for c in chunked] == [str(small)]
        assert skipped == [str(big)]


class TestCollectFiles:
    def test_walks_directories_by_extension(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "b.py").write_text("b")
        (tmp_path / "src" / "a.rs").write_text("a")
        (tmp_path / "src" / "image.png").write_bytes(b"\x89PNG")

        files = collect_files([str(tmp_path / "src")])
        assert files == [
            str(tmp_path / "src" / "a.rs"),
            str(tmp_path / "src" / "b.py"),
        ]

    def test_explicit_file_kept_regardless_of_extension(self, tmp_path):
        path = tmp_path / "Makefile"
        path.write_text("all:")
        assert collect_files([str(path)]) == [str(path)]

    def test_ignore_prefix(self, tmp_path):
        (tmp_path / "keep").mkdir()
        (tmp_path / "skip").mkdir()
        (tmp_path / "keep" / "a.py").write_text("a")
        (tmp_path / "skip" / "b.py").write_text("b")

        files = collect_files([str(tmp_path)], ignore=[str(tmp_path / "skip")])
        assert files == [str(tmp_path / "keep" / "a.py")]

    def test_missing_path_skipped(self, tmp_path):
        assert collect_files([str(tmp_path / "nope")]) == []

    def test_duplicates_removed(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("a")
        assert collect_files([str(path), str(path)]) == [str(path)]


class TestFormatChunks:
    def test_xml_format(self):
        chunked = chunk_text("src/a.py", "one\ntwo\nthree\n", 2)
        out = format_chunks([chunked], "xml")

        assert out.startswith('<file path="src/a.py" parts="2">')
        assert '<part id="1"><![CDATA[one\ntwo]]></part>' in out
        assert '<part id="2"><![CDATA[three]]></part>' in out
        assert out.endswith("</file>")

    def test_cdata_terminator_escaped(self):
        chunked = chunk_text("a", "x = a[b[0]]>c", 5)
        out = format_chunks([chunked], "xml")
        assert "]]]]><![CDATA[>" in out

    def test_json_format(self):
        chunked = chunk_text("a.py", "one\ntwo\n", 1)
        data = json.loads(format_chunks([chunked], "json"))
        assert data == [{
            "file_path": "a.py",
            "parts": [
                {"part_id": 1, "content": "one"},
                {"part_id": 2, "content": "two"},
            ],
        }]
