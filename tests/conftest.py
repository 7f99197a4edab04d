"""
Pytest configuration and fixtures for tvdb-renamer tests.
"""

import os
import sys
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tvdb_client import EpisodeInfo, Series  # noqa: E402


class FakeClient:
    """Stands in for TVDBClient: absolute N -> S01E<N> 'Title N'."""

    def __init__(self, series=None, fail_on=None):
        self.series = series or [Series(tvdb_id="81472", name="Show", year="1992")]
        self.fail_on = set(fail_on or [])
        self.lookups: list[int] = []
        self.logged_in = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return None

    def login(self):
        self.logged_in = True

    def search_series(self, query):
        return list(self.series)

    def lookup_episode(self, series, absolute_number):
        from tvdb_client import TVDBError

        self.lookups.append(absolute_number)
        if absolute_number in self.fail_on:
            raise TVDBError(f"No episodes found for absolute episode {absolute_number}")
        return EpisodeInfo(
            season_number=1,
            seasonal_episode_number=absolute_number,
            title=f"Title {absolute_number}",
        )


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def video_dir(tmp_path: Path) -> Path:
    """A directory with two matchable episodes plus noise."""
    d = tmp_path / "videos"
    d.mkdir()
    for name in (
        "Show - 01 - something.mkv",
        "Show - 02 - something else.mkv",
        "extras.mkv",
        "notes.txt",
    ):
        (d / name).write_text(name)
    (d / "Season 01").mkdir()
    (d / "Season 01" / "Show - 03 - nested.mkv").write_text("nested")
    return d


def write_config(tmp_path: Path, extra: str = "") -> Path:
    """config.yaml that keeps logs/cache inside tmp_path."""
    cfg = tmp_path / "cfg" / "config.yaml"
    cfg.parent.mkdir(parents=True, exist_ok=True)
    cfg.write_text(
        f"""
tvdb:
  cache_expiration: 0
  cache_dir: {tmp_path}/cache
log_dir: {tmp_path}/logs
{extra}
"""
    )
    return cfg
