"""Unit tests for loadspec.parsing.json_utils."""

from __future__ import annotations

import json

import pytest

from loadspec.parsing.json_utils import (
    extract_first_json_object,
    iter_brace_blocks,
    loads_json,
    loads_lenient,
    repair_json,
    strip_code_fences,
)


class TestStripCodeFences:
    def test_json_fence(self) -> None:
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self) -> None:
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self) -> None:
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


class TestRepairJson:
    def test_single_quotes_bare_keys_trailing_comma(self) -> None:
        repaired = repair_json("{'a': 'b', c: 1,}")
        assert json.loads(repaired) == {"a": "b", "c": 1}

    def test_trailing_comma_in_array(self) -> None:
        assert json.loads(repair_json('{"xs": [1, 2,]}')) == {"xs": [1, 2]}

    def test_valid_json_unchanged(self) -> None:
        text = '{"a": "b"}'
        assert repair_json(text) == text


class TestIterBraceBlocks:
    def test_multiple_blocks(self) -> None:
        text = 'x {"a": 1} y {b}'
        blocks = [text[s:e] for s, e in iter_brace_blocks(text)]
        assert blocks == ['{"a": 1}', "{b}"]

    def test_nested_is_one_block(self) -> None:
        text = '{"a": {"b": {"c": 1}}}'
        assert list(iter_brace_blocks(text)) == [(0, len(text))]

    def test_braces_inside_strings_ignored(self) -> None:
        text = '{"a": "}{", "b": "\\"}"}'
        assert list(iter_brace_blocks(text)) == [(0, len(text))]

    def test_unterminated_not_yielded(self) -> None:
        assert list(iter_brace_blocks('a {"x": 1')) == []


class TestExtractFirstJsonObject:
    def test_found(self) -> None:
        text = 'Here you go: {"a": {"b": 1}} hope it helps {"c": 2}'
        assert extract_first_json_object(text) == '{"a": {"b": 1}}'

    def test_none(self) -> None:
        assert extract_first_json_object("no braces here") is None


class TestLoadsLenient:
    def test_strict_json(self) -> None:
        assert loads_lenient('{"a": 1}') == {"a": 1}

    def test_repaired(self) -> None:
        assert loads_lenient("{'a': 1}") == {"a": 1}

    def test_unrepairable(self) -> None:
        with pytest.raises(json.JSONDecodeError):
            loads_lenient("not json at all")


class TestLoadsJson:
    def test_plain(self) -> None:
        assert loads_json('{"a": [1, 2]}') == {"a": [1, 2]}

    def test_runaway_nesting(self) -> None:
        with pytest.raises(json.JSONDecodeError, match="nests too deeply"):
            loads_json("[" * 100_000 + "]" * 100_000)

    def test_integer_past_digit_limit(self) -> None:
        with pytest.raises(json.JSONDecodeError):
            loads_json('{"virtualUsers": ' + "9" * 5000 + "}")

    def test_lenient_reports_same_errors(self) -> None:
        with pytest.raises(json.JSONDecodeError):
            loads_lenient("{" * 5000 + "}" * 5000)
