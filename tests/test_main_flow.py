"""Integration-style tests for main() control flow (simulate user interactions).
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest  # type: ignore[import-untyped]

import tvdb_renamer
from conftest import FakeClient, write_config
from tvdb_client import TVDBAuthError


def _mk_args(series: str, directory: Path, config: Path, **extra: Any) -> SimpleNamespace:
    args = SimpleNamespace(
        series=series,
        dir=directory,
        config=config,
        dry_run=False,
        manifest=None,
        verbose=False,
    )
    for k, v in extra.items():
        setattr(args, k, v)
    return args


def _never(*a: Any, **k: Any) -> Any:
    raise AssertionError("should not be reached")


@pytest.fixture
def wire(tmp_path: Path, monkeypatch: Any):
    """Patch argv parsing and the TVDB client; returns a configurator."""

    def _wire(directory: Path, client: FakeClient, **extra: Any) -> None:
        config = write_config(tmp_path)
        monkeypatch.setattr(
            tvdb_renamer, "parse_args", lambda: _mk_args("Show", directory, config, **extra)
        )
        monkeypatch.setattr(tvdb_renamer, "make_client", lambda cfg: client)

    return _wire


def test_renames_selected_files(video_dir: Path, fake_client: FakeClient, wire, monkeypatch: Any):
    wire(video_dir, fake_client)
    monkeypatch.setattr(tvdb_renamer, "select_plans", lambda plans, display: [0, 1])
    monkeypatch.setattr(tvdb_renamer.Confirm, "ask", lambda *a, **k: True)

    tvdb_renamer.main()

    assert fake_client.logged_in
    assert fake_client.lookups == [1, 2]
    assert sorted(os.listdir(video_dir)) == [
        "Season 01",
        "Show S01E1 - Title 1.mkv",
        "Show S01E2 - Title 2.mkv",
        "extras.mkv",
        "notes.txt",
    ]


def test_only_selected_subset_is_renamed(
    video_dir: Path, fake_client: FakeClient, wire, monkeypatch: Any
):
    wire(video_dir, fake_client)
    monkeypatch.setattr(tvdb_renamer, "select_plans", lambda plans, display: [1])
    monkeypatch.setattr(tvdb_renamer.Confirm, "ask", lambda *a, **k: True)

    tvdb_renamer.main()

    names = os.listdir(video_dir)
    assert "Show - 01 - something.mkv" in names
    assert "Show S01E2 - Title 2.mkv" in names


def test_declined_confirmation_changes_nothing(
    video_dir: Path, fake_client: FakeClient, wire, monkeypatch: Any
):
    before = sorted(os.listdir(video_dir))
    wire(video_dir, fake_client)
    monkeypatch.setattr(tvdb_renamer, "select_plans", lambda plans, display: [0, 1])
    monkeypatch.setattr(tvdb_renamer.Confirm, "ask", lambda *a, **k: False)
    monkeypatch.setattr(tvdb_renamer, "execute_renames", _never)

    tvdb_renamer.main()

    assert sorted(os.listdir(video_dir)) == before


def test_cancelled_selection_changes_nothing(
    video_dir: Path, fake_client: FakeClient, wire, monkeypatch: Any
):
    before = sorted(os.listdir(video_dir))
    wire(video_dir, fake_client)
    monkeypatch.setattr(tvdb_renamer, "select_plans", lambda plans, display: None)
    monkeypatch.setattr(tvdb_renamer.Confirm, "ask", _never)

    tvdb_renamer.main()

    assert sorted(os.listdir(video_dir)) == before


def test_no_matches_skips_selection(tmp_path: Path, fake_client: FakeClient, wire, monkeypatch: Any):
    d = tmp_path / "videos"
    d.mkdir()
    (d / "extras.mkv").write_text("x")
    (d / "Show.2024.1080p.mkv").write_text("x")
    wire(d, fake_client)
    monkeypatch.setattr(tvdb_renamer, "select_plans", _never)

    tvdb_renamer.main()  # clean return, no SystemExit

    assert fake_client.lookups == []


def test_lookup_failure_aborts_before_ui(
    video_dir: Path, wire, monkeypatch: Any
):
    before = sorted(os.listdir(video_dir))
    wire(video_dir, FakeClient(fail_on=[2]))
    monkeypatch.setattr(tvdb_renamer, "select_plans", _never)

    with pytest.raises(SystemExit) as exc:
        tvdb_renamer.main()

    assert exc.value.code == 1
    assert sorted(os.listdir(video_dir)) == before


def test_rename_failure_does_not_stop_batch(
    video_dir: Path, fake_client: FakeClient, wire, monkeypatch: Any, tmp_path: Path
):
    # Target of the first plan already exists
    (video_dir / "Show S01E1 - Title 1.mkv").write_text("precious")
    manifest = tmp_path / "manifest.json"
    wire(video_dir, fake_client, manifest=manifest)
    monkeypatch.setattr(tvdb_renamer, "select_plans", lambda plans, display: [0, 1])
    monkeypatch.setattr(tvdb_renamer.Confirm, "ask", lambda *a, **k: True)

    tvdb_renamer.main()

    assert (video_dir / "Show - 01 - something.mkv").exists()
    assert (video_dir / "Show S01E1 - Title 1.mkv").read_text() == "precious"
    assert (video_dir / "Show S01E2 - Title 2.mkv").exists()

    data = json.loads(manifest.read_text())
    assert data["renamed"] == 1
    assert [op["success"] for op in data["operations"]] == [False, True]


def test_dry_run_touches_nothing(video_dir: Path, fake_client: FakeClient, wire, monkeypatch: Any):
    before = sorted(os.listdir(video_dir))
    wire(video_dir, fake_client, dry_run=True)
    monkeypatch.setattr(tvdb_renamer, "select_plans", _never)

    tvdb_renamer.main()

    assert sorted(os.listdir(video_dir)) == before


def test_auth_failure_exits_nonzero(video_dir: Path, wire, monkeypatch: Any):
    client = FakeClient()

    def reject():
        raise TVDBAuthError("TVDB rejected the credentials (401 Unauthorized)")

    client.login = reject  # type: ignore[method-assign]
    wire(video_dir, client)

    with pytest.raises(SystemExit) as exc:
        tvdb_renamer.main()
    assert exc.value.code == 1


def test_missing_directory_exits_nonzero(tmp_path: Path, fake_client: FakeClient, wire):
    wire(tmp_path / "does-not-exist", fake_client)
    with pytest.raises(SystemExit) as exc:
        tvdb_renamer.main()
    assert exc.value.code == 1


def test_missing_api_key_exits_nonzero(video_dir: Path, tmp_path: Path, monkeypatch: Any):
    monkeypatch.delenv("TVDB_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    config = write_config(tmp_path)
    monkeypatch.setattr(
        tvdb_renamer, "parse_args", lambda: _mk_args("Show", video_dir, config)
    )

    with pytest.raises(SystemExit) as exc:
        tvdb_renamer.main()
    assert exc.value.code == 1


def test_bad_config_exits_nonzero(video_dir: Path, tmp_path: Path, monkeypatch: Any):
    config = tmp_path / "bad.yaml"
    config.write_text("- not a mapping\n")
    monkeypatch.setattr(
        tvdb_renamer, "parse_args", lambda: _mk_args("Show", video_dir, config)
    )
    with pytest.raises(SystemExit) as exc:
        tvdb_renamer.main()
    assert exc.value.code == 1


def test_interrupt_exits_130(video_dir: Path, fake_client: FakeClient, wire, monkeypatch: Any):
    wire(video_dir, fake_client)

    def interrupt(plans, display):
        raise KeyboardInterrupt

    monkeypatch.setattr(tvdb_renamer, "select_plans", interrupt)
    with pytest.raises(SystemExit) as exc:
        tvdb_renamer.main()
    assert exc.value.code == 130


class TestParseArgs:
    def test_series_is_required(self) -> None:
        with pytest.raises(SystemExit) as exc:
            tvdb_renamer.parse_args([])
        assert exc.value.code == 2

    def test_defaults(self) -> None:
        args = tvdb_renamer.parse_args(["--series", "Cowboy Bebop"])
        assert args.series == "Cowboy Bebop"
        assert args.dir == Path(".")
        assert args.dry_run is False
        assert args.manifest is None

    def test_short_flags(self, tmp_path: Path) -> None:
        args = tvdb_renamer.parse_args(["-s", "Show", "-d", str(tmp_path), "-n", "-v"])
        assert args.dir == tmp_path
        assert args.dry_run is True
        assert args.verbose is True
