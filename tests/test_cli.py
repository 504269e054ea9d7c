"""Tests for the Typer command line."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from sitefetch import cli
from sitefetch.errors import FetchFailure
from sitefetch.operations import build_operations

from conftest import FakeCrawler


URL = "https://example.com/docs"

runner = CliRunner()


@pytest.fixture
def fake(monkeypatch) -> FakeCrawler:
    crawler = FakeCrawler()
    monkeypatch.setattr(cli, "build_operations", lambda cfg: build_operations(cfg, crawler=crawler))
    return crawler


def _invoke(*args: str, cache_dir, input: str | None = None):
    return runner.invoke(cli.app, [*args, "--cache-dir", str(cache_dir)], input=input)


def test_fetch_then_hit(fake, tmp_path):
    first = _invoke("fetch", URL, cache_dir=tmp_path)
    second = _invoke("fetch", URL, cache_dir=tmp_path)

    assert first.exit_code == 0
    assert "Freshly captured." in first.stdout
    assert second.exit_code == 0
    assert "Served from cache." in second.stdout
    assert fake.calls == [URL]


def test_fetch_print_outputs_content(fake, tmp_path):
    result = _invoke("fetch", URL, "--print", cache_dir=tmp_path)

    assert result.exit_code == 0
    assert "<content>v1</content>" in result.stdout


def test_fetch_failure_exits_nonzero(fake, tmp_path):
    fake.fail_with = FetchFailure("boom")

    result = _invoke("fetch", URL, cache_dir=tmp_path)

    assert result.exit_code == 1


def test_list_empty_and_populated(fake, tmp_path):
    empty = _invoke("list", cache_dir=tmp_path)
    _invoke("fetch", URL, cache_dir=tmp_path)
    populated = _invoke("list", cache_dir=tmp_path)

    assert empty.exit_code == 0
    assert "No sites have been fetched yet." in empty.stdout
    assert populated.exit_code == 0
    assert "Fetched sites" in populated.stdout


def test_clear_requires_confirmation(fake, tmp_path):
    _invoke("fetch", URL, cache_dir=tmp_path)

    declined = _invoke("clear", cache_dir=tmp_path, input="n\n")
    confirmed = _invoke("clear", "--yes", cache_dir=tmp_path)

    assert declined.exit_code == 1
    assert confirmed.exit_code == 0
    assert "Cleared cache for 1 sites." in confirmed.stdout


def test_remove_and_reconcile(fake, tmp_path):
    _invoke("fetch", URL, cache_dir=tmp_path)

    removed = _invoke("remove", URL, cache_dir=tmp_path)
    missing = _invoke("remove", URL, cache_dir=tmp_path)
    reconciled = _invoke("reconcile", cache_dir=tmp_path)

    assert removed.exit_code == 0
    assert missing.exit_code == 1
    assert reconciled.exit_code == 0
    assert "orphan files" in reconciled.stdout


def test_unknown_crawler_backend_exits_with_usage_error(tmp_path):
    result = _invoke("fetch", URL, "--crawler", "wget", cache_dir=tmp_path)

    assert result.exit_code == 2
