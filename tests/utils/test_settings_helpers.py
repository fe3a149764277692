"""Tests for crawlq.utils.settings helpers"""

import pytest

from crawlq.utils.settings import (
    ensure_float,
    ensure_int,
    ensure_str,
    load_config_file,
    load_env,
    map_keys_to_canonical,
    parse_literal,
    parse_value,
    resolve_dotted_path,
    shallow_merge_dicts,
)

# Coercion Tests


@pytest.mark.parametrize("value, expected", [(3, 3), (3.0, 3), ("42", 42), (" -7 ", -7)])
def test_ensure_int_accepts_int_like(value, expected):
    assert ensure_int(value, "N") == expected


@pytest.mark.parametrize("value", [True, None, 3.5, "abc", [1]])
def test_ensure_int_rejects_non_int_like(value):
    with pytest.raises(TypeError, match="N must be"):
        ensure_int(value, "N")


def test_ensure_int_minimum():
    with pytest.raises(ValueError, match="N must be >= 1, got 0"):
        ensure_int(0, "N", minimum=1)


def test_ensure_float():
    assert ensure_float("2.5", "F") == 2.5
    assert ensure_float(2, "F") == 2.0
    with pytest.raises(TypeError):
        ensure_float("fast", "F")
    with pytest.raises(TypeError):
        ensure_float(False, "F")
    with pytest.raises(ValueError):
        ensure_float(-1, "F", minimum=0.0)


def test_ensure_str():
    assert ensure_str(b"bytes", "S") == "bytes"
    assert ensure_str(5, "S") == "5"
    with pytest.raises(TypeError):
        ensure_str(None, "S")


# Literal Parsing Tests


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("true", True),
        ("FALSE", False),
        ("yes", "yes"),
        ("1", 1),
        ("1.5", 1.5),
        ("  ", ""),
        ("text", "text"),
    ],
)
def test_parse_literal(raw, expected):
    assert parse_literal(raw) == expected


def test_parse_value_reads_json_containers():
    assert parse_value('{"Accept": "*/*"}') == {"Accept": "*/*"}
    assert parse_value("[1, 2]") == [1, 2]
    assert parse_value("{not json") == "{not json"
    assert parse_value("10") == 10


# Loading Tests


def test_load_env_filters_prefix():
    env = {"CRAWLQ_concurrency": "5", "CRAWLQ_": "x", "OTHER": "1", "CRAWLQ_RETRY": "false"}
    assert load_env(environ=env) == {"CONCURRENCY": 5, "RETRY": False}


def test_load_config_file_rejects_non_table(tmp_path):
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(TypeError, match="table/object"):
        load_config_file(path)


def test_map_keys_to_canonical():
    mapped = map_keys_to_canonical({"retry": 1, "unknown": 2, 3: "x"}, ["RETRY"])
    assert mapped == {"RETRY": 1, "UNKNOWN": 2}


def test_shallow_merge_dicts():
    base = {"A": {"x": 1, "y": 1}, "B": 1}
    merged = shallow_merge_dicts(base, {"A": {"y": 2}, "B": 2})

    assert merged == {"A": {"x": 1, "y": 2}, "B": 2}
    assert base["A"] == {"x": 1, "y": 1}


def test_resolve_dotted_path():
    from crawlq.resolvers import RandomUserAgent

    assert resolve_dotted_path("crawlq.resolvers.RandomUserAgent") is RandomUserAgent
    assert resolve_dotted_path("crawlq.resolvers:RandomUserAgent") is RandomUserAgent
    obj = object()
    assert resolve_dotted_path(obj) is obj
    with pytest.raises(ImportError, match="has no attribute"):
        resolve_dotted_path("crawlq.resolvers.Nope")
