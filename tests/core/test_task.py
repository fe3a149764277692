"""Tests for crawlq.core.task"""

from pathlib import Path

import pytest

from crawlq.core.task import DownloadOptions, DownloadTask, RequestTask, TaskKind


def test_request_task_defaults():
    task = RequestTask("https://example.com/")

    assert task.kind is TaskKind.REQUEST
    assert task.method == "GET"
    assert task.body is None
    assert task.headers == {}


def test_request_task_normalizes_method():
    assert RequestTask("https://example.com/", method="post").method == "POST"
    assert RequestTask("https://example.com/", method="").method == "GET"


@pytest.mark.parametrize("url", ["", None, 123])
def test_request_task_requires_url(url):
    with pytest.raises(TypeError, match="url"):
        RequestTask(url)


def test_request_task_keeps_url_verbatim():
    """URLs are not normalized."""
    url = "HTTPS://Example.com/a/../b?b=2&a=1#frag"
    assert RequestTask(url).url == url


def test_from_dict_builds_task():
    task = RequestTask.from_dict(
        {"url": "https://example.com/", "method": "put", "body": {"a": 1}, "headers": {"X": 1}}
    )

    assert task.method == "PUT"
    assert task.body == {"a": 1}
    assert task.headers == {"X": "1"}


def test_from_dict_rejects_bad_input():
    with pytest.raises(TypeError, match="mapping"):
        RequestTask.from_dict(["https://example.com/"])
    with pytest.raises(TypeError, match="url"):
        RequestTask.from_dict({"method": "GET"})
    with pytest.raises(TypeError, match="headers"):
        RequestTask.from_dict({"url": "https://example.com/", "headers": "nope"})


# DownloadTask / DownloadOptions


def test_download_task_coerces_filepath():
    task = DownloadTask("https://example.com/f.bin", "out/f.bin")

    assert task.kind is TaskKind.DOWNLOAD
    assert task.method == "GET"
    assert isinstance(task.filepath, Path)
    assert task.options == DownloadOptions()


def test_download_options_coerce_from_mapping():
    opts = DownloadOptions.coerce({"headers": {"Accept": "*/*"}, "proxy": "http://proxy:8080"})
    assert opts == DownloadOptions(headers={"Accept": "*/*"}, proxy="http://proxy:8080")


def test_download_options_coerce_none_and_copy():
    assert DownloadOptions.coerce(None) == DownloadOptions()

    original = DownloadOptions(headers={"A": "1"})
    copied = DownloadOptions.coerce(original)
    assert copied == original
    assert copied is not original


def test_download_options_coerce_rejects_unknown_keys():
    with pytest.raises(TypeError, match="Unknown download option"):
        DownloadOptions.coerce({"timeout": 5})
    with pytest.raises(TypeError):
        DownloadOptions.coerce("proxy")
