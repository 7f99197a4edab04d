"""
Episode number inference for loosely-named video files.

Two passes, first match wins:

- strict: a 1-4 digit token standing alone between whitespace/hyphens
    'Show - 07 - Title.mkv'   -> 7
- loose: every word-bounded 1-4 digit run, minus years and resolutions,
  keeping the LAST survivor
    'Show.1080p.12.mkv'       -> 12
    'Show.2024.1080p.mkv'     -> no match
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

MatchType = Literal["strict", "loose"]

# Token delimited on both sides by whitespace or a hyphen
STRICT_REGEX = re.compile(r"(?:\s|-)(\d{1,4})(?:\s|-)", re.ASCII)
# Any maximal 1-4 digit run between word boundaries
LOOSE_REGEX = re.compile(r"\b\d{1,4}\b", re.ASCII)

YEAR_THRESHOLD = 1900
RESOLUTION_MARKERS = frozenset({720, 1080, 2160})


@dataclass(frozen=True)
class EpisodeMatch:
    filename: str
    episode_number: int = 0
    match_type: MatchType | None = None
    found: bool = False


def is_excluded_number(value: int) -> bool:
    """True for numbers that look like a calendar year or a resolution tag."""
    return value >= YEAR_THRESHOLD or value in RESOLUTION_MARKERS


def loose_candidates(filename: str) -> list[int]:
    """All loose-pass candidates surviving the denylist, in scan order."""
    candidates: list[int] = []
    for raw in LOOSE_REGEX.findall(filename):
        try:
            num = int(raw)
        except ValueError:
            continue
        if is_excluded_number(num):
            continue
        candidates.append(num)
    return candidates


def match_episode_number(filename: str) -> EpisodeMatch:
    """Guess the absolute episode number of a bare filename.

    Never raises; a miss is returned as ``found=False``.
    """
    m = STRICT_REGEX.search(filename)
    if m:
        try:
            return EpisodeMatch(
                filename=filename,
                episode_number=int(m.group(1)),
                match_type="strict",
                found=True,
            )
        except ValueError:
            pass

    best: int | None = None
    for num in loose_candidates(filename):
        best = num  # last valid wins

    if best is not None:
        return EpisodeMatch(
            filename=filename,
            episode_number=best,
            match_type="loose",
            found=True,
        )

    return EpisodeMatch(filename=filename)
