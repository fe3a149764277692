"""Tests for crawlq.core.stats.StatsCollector"""

import threading
from unittest.mock import Mock

import pytest

from crawlq.core.stats import StatsCollector


def test_inc_value():
    """StatsCollector inc_value increments counters."""
    stats = StatsCollector()

    stats.inc_value("engine/task_dispatched_count")
    stats.inc_value("engine/task_dispatched_count")
    stats.inc_value("downloader/bytes_downloaded", count=512)

    assert stats.get_value("engine/task_dispatched_count") == 2
    assert stats.get_value("downloader/bytes_downloaded") == 512


def test_inc_value_coerces_non_numeric():
    """StatsCollector inc_value restarts a non-numeric value from 0."""
    stats = StatsCollector()

    stats.set_meta("key", "string_value")
    stats.inc_value("key")

    assert stats.get_value("key") == 1


def test_set_counter_and_meta_validate_types():
    stats = StatsCollector()

    stats.set_counter("total", 100)
    stats.set_meta("provider_name", "books")
    assert stats.get_value("total") == 100
    assert stats.get_value("provider_name") == "books"

    with pytest.raises(TypeError, match="set_counter"):
        stats.set_counter("total", "100")
    with pytest.raises(TypeError, match="set_meta"):
        stats.set_meta("provider_name", 1)


def test_get_value_default_does_not_create_key():
    stats = StatsCollector()

    assert stats.get_value("missing", 0) == 0
    assert "missing" not in stats.get_stats()


def test_open_and_close_provider_record_times():
    """open/close record start, finish, reason and elapsed time."""
    stats = StatsCollector()
    provider = Mock()
    provider.name = "books"

    stats.open_provider(provider)
    stats.close_provider(provider, reason="stopped")
    snapshot = stats.get_stats()

    assert snapshot["provider_name"] == "books"
    assert snapshot["finish_reason"] == "stopped"
    assert snapshot["elapsed_time_seconds"] >= 0
    assert snapshot["start_time"] <= snapshot["finish_time"]


def test_get_stats_returns_copy():
    stats = StatsCollector()
    stats.inc_value("a")

    snapshot = stats.get_stats()
    snapshot["a"] = 100
    assert stats.get_value("a") == 1


def test_format_stats_sorted_lines():
    stats = StatsCollector()
    stats.inc_value("b/count", 1234)
    stats.set_counter("a/ratio", 0.5)
    stats.set_meta("c/name", "x")

    assert stats.format_stats().splitlines() == [
        "  a/ratio: 0.5",
        "  b/count: 1,234",
        "  c/name: x",
    ]


def test_inc_value_is_thread_safe():
    stats = StatsCollector()

    def bump():
        for _ in range(1000):
            stats.inc_value("n")

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert stats.get_value("n") == 4000
