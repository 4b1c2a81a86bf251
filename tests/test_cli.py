from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from click.testing import CliRunner

from backend.catalog_sync.cli import main
from backend.catalog_sync.dependencies import reset_cached_dependencies
from conftest import FakeWatchmodeApi, title_payload


@pytest.fixture
def runner(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    watchmode_api: FakeWatchmodeApi,
) -> Iterator[CliRunner]:
    _ = watchmode_api
    monkeypatch.setenv("CATALOG_SYNC_DATA_DIR", str(tmp_path / "cli-data"))
    monkeypatch.setenv("CATALOG_SYNC_WATCHMODE_API_KEY", "test-watchmode-key")
    monkeypatch.setenv("CATALOG_SYNC_WATCHMODE_MONTHLY_REQUEST_LIMIT", "20")
    monkeypatch.setenv("CATALOG_SYNC_TELEMETRY_SINK", "none")
    monkeypatch.delenv("CATALOG_SYNC_TVDB_API_KEY", raising=False)
    reset_cached_dependencies()
    yield CliRunner()
    reset_cached_dependencies()
    # The console handler points at the runner's captured stream, which is gone now.
    for handler in list(logging.getLogger("catalog_sync").handlers):
        logging.getLogger("catalog_sync").removeHandler(handler)
        handler.close()


def test_cli_sync_then_list_and_quota(runner: CliRunner, watchmode_api: FakeWatchmodeApi) -> None:
    watchmode_api.add_title(title_payload(1, "The Wicker Man", year=1973))
    watchmode_api.search_pages = [[watchmode_api.search_hit(1)]]

    synced = runner.invoke(main, ["sync", "--count", "5", "--platform", "Shudder"])
    listed = runner.invoke(main, ["list", "--decade", "1970s"])
    quota = runner.invoke(main, ["quota"])

    assert synced.exit_code == 0, synced.output
    assert "DONE" in synced.output
    assert "The Wicker Man" in synced.output
    assert listed.exit_code == 0
    assert "The Wicker Man" in listed.output
    assert quota.exit_code == 0
    assert "3/20 used" in quota.output


def test_cli_rejects_unknown_platform(runner: CliRunner) -> None:
    result = runner.invoke(main, ["sync", "--platform", "Laserdisc"])

    assert result.exit_code != 0
    assert "unknown platforms" in result.output
