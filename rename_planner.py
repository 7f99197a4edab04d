"""
Rename plans: from matched filenames + episode metadata to reviewed renames.

A plan is only ever built fully populated. Execution is a plain ordered loop:
each rename succeeds or fails on its own, nothing is rolled back.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from episode_matcher import EpisodeMatch, loose_candidates, match_episode_number
from tvdb_client import EpisodeInfo

logger = logging.getLogger(__name__)

VIDEO_EXTS = (".mkv",)
DEFAULT_OLD_MAX = 80
DEFAULT_NEW_MAX = 90


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return text[:max_len]
    return text[: max_len - 3] + "..."


def build_new_filename(
    series_name: str,
    season_number: int,
    seasonal_episode_number: int,
    episode_title: str,
    extension: str = ".mkv",
) -> str:
    """Build the target filename.

    Format: '<Series> S<season:02d>E<episode> - <Title>.mkv'

    Example:
        ('Show', 3, 5, 'Pilot') -> 'Show S03E5 - Pilot.mkv'
    """
    # Titles like 'Good/Evil' must not turn the target into a path
    title = episode_title.replace("/", "-").replace("\\", "-")
    return f"{series_name} S{season_number:02d}E{seasonal_episode_number} - {title}{extension}"


@dataclass(frozen=True)
class RenamePlan:
    series_name: str
    season_number: int
    seasonal_episode_number: int
    episode_title: str
    old_file_name: str
    new_file_name: str

    def label(self, old_max: int = DEFAULT_OLD_MAX, new_max: int = DEFAULT_NEW_MAX) -> str:
        return f"{truncate(self.old_file_name, old_max)}  →  {truncate(self.new_file_name, new_max)}"


@dataclass
class RenameResult:
    plan: RenamePlan
    success: bool
    error: str | None = None


def build_rename_plan(series_name: str, match: EpisodeMatch, info: EpisodeInfo) -> RenamePlan:
    if not match.found:
        raise ValueError(f"No episode number matched in {match.filename!r}")

    extension = os.path.splitext(match.filename)[1] or ".mkv"
    return RenamePlan(
        series_name=series_name,
        season_number=info.season_number,
        seasonal_episode_number=info.seasonal_episode_number,
        episode_title=info.title,
        old_file_name=match.filename,
        new_file_name=build_new_filename(
            series_name,
            info.season_number,
            info.seasonal_episode_number,
            info.title,
            extension,
        ),
    )


def list_video_files(directory: Path, extensions: Iterable[str] = VIDEO_EXTS) -> list[str]:
    """Names of regular files directly inside directory with a supported extension.

    Raises OSError if the directory cannot be read.
    """
    exts = set(extensions)
    return sorted(
        entry.name
        for entry in directory.iterdir()
        if entry.is_file() and entry.suffix in exts
    )


def build_rename_plans(
    directory: Path,
    series_name: str,
    lookup: Callable[[int], EpisodeInfo],
    extensions: Iterable[str] = VIDEO_EXTS,
) -> list[RenamePlan]:
    """Match every video file and build one plan per match.

    Unmatched files are skipped. A failing lookup propagates and aborts the
    whole batch, so callers never see a partial plan list.
    """
    plans: list[RenamePlan] = []
    for name in list_video_files(directory, extensions):
        match = match_episode_number(name)
        if not match.found:
            logger.debug("Skipping (no episode number) %s", name)
            continue

        logger.debug("Matched %s -> %d (%s)", name, match.episode_number, match.match_type)
        if match.match_type == "loose":
            logger.debug("  loose candidates: %s", loose_candidates(name))
        info = lookup(match.episode_number)
        plans.append(build_rename_plan(series_name, match, info))

    return plans


def rename_file(directory: Path, old_name: str, new_name: str) -> None:
    """Rename a single entry inside directory.

    Refuses to overwrite an existing, different entry.
    """
    old_path = directory / old_name
    new_path = directory / new_name
    if old_name != new_name and new_path.exists():
        raise FileExistsError(f"Target already exists: {new_name}")
    os.rename(old_path, new_path)


def execute_renames(
    directory: Path,
    plans: Sequence[RenamePlan],
    on_result: Callable[[RenameResult], None] | None = None,
) -> list[RenameResult]:
    """Apply plans in order, one at a time. A failure never stops the batch."""
    results: list[RenameResult] = []
    for plan in plans:
        try:
            rename_file(directory, plan.old_file_name, plan.new_file_name)
            result = RenameResult(plan=plan, success=True)
            logger.info("Renamed %s -> %s", plan.old_file_name, plan.new_file_name)
        except OSError as e:
            result = RenameResult(plan=plan, success=False, error=str(e))
            logger.error("Failed to rename %s: %s", plan.old_file_name, e)

        results.append(result)
        if on_result is not None:
            on_result(result)

    return results


def count_successes(results: Iterable[RenameResult]) -> int:
    return sum(1 for r in results if r.success)


def write_manifest(results: Sequence[RenameResult], directory: Path, path: Path) -> Path:
    """Write a JSON record of the run, for manual recovery."""
    manifest = {
        "generated_at": time.strftime("%Y-%m-%d %H:%M:%S"),
        "directory": str(directory),
        "total_files": len(results),
        "renamed": count_successes(results),
        "operations": [
            {
                "original_name": r.plan.old_file_name,
                "new_name": r.plan.new_file_name,
                "success": r.success,
                "error": r.error,
            }
            for r in results
        ],
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(manifest, f, indent=2, ensure_ascii=False)

    return path
