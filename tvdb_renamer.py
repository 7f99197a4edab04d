#!/usr/bin/env python3
"""
Rename video files to canonical TVDB episode titles.

Rich UI edition ✨

Flow:
- Log in to TVDB (TVDB_API_KEY from env or .env)
- Search the series given with --series, pick one if several match
- Scan --dir (non-recursive) for .mkv files and guess each absolute episode number
- Look up season / in-season number / English title for every match
- Let you untick files you don't want renamed, confirm, then rename one by one

Target format:
    <Series> S<season:02d>E<episode> - <Title>.mkv

Usage:
    python tvdb_renamer.py --series "Yu Yu Hakusho" --dir /mnt/videos/yyh
    python tvdb_renamer.py -s "Cowboy Bebop" --dry-run
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, cast

import yaml
from prompt_toolkit.shortcuts import checkboxlist_dialog
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from rename_planner import (
    RenamePlan,
    RenameResult,
    build_rename_plans,
    count_successes,
    execute_renames,
    write_manifest,
)
from tvdb_client import (
    DEFAULT_LANGUAGE,
    TVDB_API_BASE,
    Series,
    TVDBAuthError,
    TVDBClient,
    TVDBError,
    cleanup_expired_cache,
)

THEME = Theme(
    {
        "title": "bold magenta",
        "highlight": "bold green",
        "ok": "bold bright_green",
        "err": "bold red",
        "warn": "bold yellow",
        "old": "strike grey50",
        "new": "bold green",
        "arrow": "blue",
        "dim": "dim",
        "k": "cyan",
    }
)
console = Console(theme=THEME, highlight=False)

CONFIG_DIR = Path(__file__).parent / "config"
CONFIG_YAML_PATH = CONFIG_DIR / "config.yaml"
DEFAULT_LOG_DIR = Path.home() / ".local" / "share" / "tvdb-renamer"
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "tvdb-renamer"

logger = logging.getLogger("tvdb_renamer")


def styled(text: str, kind: str) -> Text:
    """Plain text + a presentation kind -> renderable. Kinds are THEME keys."""
    return Text(text, style=kind)


# ----------------------------
# Config
# ----------------------------


class ConfigError(Exception):
    """Raised for unusable configuration (bad YAML, missing API key)."""


def _expand_path(p: str) -> Path:
    """Expand ~ and $VARS (doesn't require existence)."""
    return Path(os.path.expandvars(p.strip())).expanduser()


def _coerce_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _coerce_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class TVDBCfg:
    base_url: str
    language: str
    timeout: float
    max_retries: int
    cache_expiration: int  # minutes, 0 disables
    cache_dir: Path


@dataclass(frozen=True)
class DisplayCfg:
    old_max: int
    new_max: int


@dataclass(frozen=True)
class AppCfg:
    tvdb: TVDBCfg
    display: DisplayCfg
    extensions: tuple[str, ...]
    log_dir: Path
    env_file: Path


def load_config(path: Path) -> AppCfg:
    """Load config.yaml. A missing file means all defaults."""
    raw: dict[str, Any] = {}
    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if loaded is None:
            raw = {}
        elif not isinstance(loaded, dict):
            raise ConfigError(f"{path}: root must be a mapping")
        else:
            raw = cast(dict[str, Any], loaded)

    tvdb_node: dict[str, Any] = cast(dict[str, Any], raw.get("tvdb") or {})
    tvdb = TVDBCfg(
        base_url=str(tvdb_node.get("base_url", TVDB_API_BASE)).strip().rstrip("/"),
        language=str(tvdb_node.get("language", DEFAULT_LANGUAGE)).strip(),
        timeout=_coerce_float(tvdb_node.get("timeout"), 10.0),
        max_retries=_coerce_int(tvdb_node.get("max_retries"), 3),
        cache_expiration=_coerce_int(tvdb_node.get("cache_expiration"), 60),
        cache_dir=_expand_path(str(tvdb_node.get("cache_dir", DEFAULT_CACHE_DIR))),
    )

    display_node: dict[str, Any] = cast(dict[str, Any], raw.get("display") or {})
    display = DisplayCfg(
        old_max=_coerce_int(display_node.get("old_max"), 80),
        new_max=_coerce_int(display_node.get("new_max"), 90),
    )

    exts_raw = raw.get("extensions") or [".mkv"]
    if isinstance(exts_raw, str):
        exts_raw = [exts_raw]
    cleaned = [str(x).strip() for x in exts_raw]
    extensions = tuple(e if e.startswith(".") else f".{e}" for e in cleaned if e)
    if not extensions:
        raise ConfigError("extensions must list at least one file extension")

    return AppCfg(
        tvdb=tvdb,
        display=display,
        extensions=extensions,
        log_dir=_expand_path(str(raw.get("log_dir", DEFAULT_LOG_DIR))),
        env_file=path.parent / ".env",
    )


def load_env_file(path: Path) -> dict[str, str]:
    """Load key=value pairs from a .env file."""
    env_vars = {}
    if path.exists():
        with open(path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    env_vars[key.strip()] = value.strip().strip("\"'")
    return env_vars


def get_tvdb_credentials(env_file: Path) -> tuple[str, str | None]:
    """(api_key, pin) from the environment, ./.env, or the .env beside config.yaml."""
    key = os.environ.get("TVDB_API_KEY")
    pin = os.environ.get("TVDB_PIN")
    if key:
        return key, pin or None

    for candidate in (Path.cwd() / ".env", env_file):
        env_vars = load_env_file(candidate)
        key = env_vars.get("TVDB_API_KEY")
        if key:
            return key, (pin or env_vars.get("TVDB_PIN")) or None

    raise ConfigError(
        "TVDB_API_KEY is not set.\n"
        "Set it in the environment or create a .env file with:\n"
        "  TVDB_API_KEY=your_key_here"
    )


# ----------------------------
# Logging
# ----------------------------


def setup_logging(log_dir: Path, verbose: bool = False) -> Path | None:
    """File logging for every run, plus console debug output with --verbose.

    Replaces any handlers left on the root logger by an earlier call.
    Returns the log file path if the log directory is usable, None otherwise.
    """
    handlers: list[logging.Handler] = []
    if verbose:
        rich_handler = RichHandler(console=console, show_path=False, level=logging.DEBUG)
        rich_handler.setFormatter(logging.Formatter("%(message)s"))
        handlers.append(rich_handler)

    log_file: Path | None = None
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"tvdb_renamer_{timestamp}.log"
        handlers.append(logging.FileHandler(log_file))
    except OSError:
        log_file = None

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers or [logging.NullHandler()],
        force=True,
    )
    # httpcore logs every socket event at DEBUG
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return log_file


def print_error(msg: str) -> None:
    console.print()
    console.print(styled(f"Error: {msg}", "err"))
    logger.error(msg)


# ----------------------------
# Prompts
# ----------------------------


def choose_series(results: list[Series], language: str = DEFAULT_LANGUAGE) -> Series:
    """Pick the series to rename against. A sole result is taken as-is."""
    if not results:
        raise TVDBError("No series found")
    if len(results) == 1:
        return results[0]

    table = Table(title="Select the correct series", show_header=False, box=None, padding=(0, 2))
    table.add_column("idx", style="cyan")
    table.add_column("name")
    table.add_column("year", style="dim")
    for i, s in enumerate(results, 1):
        table.add_row(f"[{i}]", s.display_name(language), s.year)
    console.print(table)

    choices = [str(i) for i in range(1, len(results) + 1)]
    choice = Prompt.ask("Series", choices=choices, default="1")
    return results[int(choice) - 1]


def select_plans(plans: list[RenamePlan], display: DisplayCfg) -> list[int] | None:
    """Multi-select of plans, all ticked by default. None when cancelled."""
    values = [(i, plan.label(display.old_max, display.new_max)) for i, plan in enumerate(plans)]
    selected: list[int] | None = checkboxlist_dialog(
        title="Select files to rename",
        text="Space to toggle selection • Enter to rename selected files",
        values=values,
        default_values=list(range(len(plans))),
    ).run()
    return selected


def render_plans(plans: list[RenamePlan], title: str) -> None:
    table = Table(title=title, box=box.SIMPLE, title_style="title")
    table.add_column("Current name")
    table.add_column("")
    table.add_column("New name")
    for plan in plans:
        table.add_row(
            styled(plan.old_file_name, "old"),
            styled("→", "arrow"),
            styled(plan.new_file_name, "new"),
        )
    console.print(table)


def confirm_renames(selected: list[RenamePlan]) -> bool:
    render_plans(selected, "Files to be renamed")
    return Confirm.ask(f"Proceed with renaming these {len(selected)} file(s)?", default=False)


def report_result(result: RenameResult) -> None:
    if result.success:
        console.print(styled(f"✔  {result.plan.new_file_name}", "ok"))
    else:
        console.print(styled(f"✖  {result.plan.old_file_name}", "err"))
        console.print(styled(f"   {result.error}", "dim"))


# ----------------------------
# Main
# ----------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        description="Rename video files to canonical TVDB episode titles",
    )
    ap.add_argument("--series", "-s", required=True, help="Series title to search for on TVDB")
    ap.add_argument(
        "--dir", "-d", type=Path, default=Path("."), help="Directory with video files (default: .)"
    )
    ap.add_argument(
        "--config",
        "-c",
        type=Path,
        default=CONFIG_YAML_PATH,
        help=f"Path to config.yaml (default: {CONFIG_YAML_PATH})",
    )
    ap.add_argument(
        "--dry-run", "-n", action="store_true", help="Show the rename plan and exit"
    )
    ap.add_argument(
        "--manifest", type=Path, metavar="FILE", help="Write a JSON manifest of the renames"
    )
    ap.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    return ap.parse_args(argv)


def make_client(cfg: AppCfg) -> TVDBClient:
    api_key, pin = get_tvdb_credentials(cfg.env_file)
    return TVDBClient(
        api_key=api_key,
        pin=pin,
        base_url=cfg.tvdb.base_url,
        language=cfg.tvdb.language,
        timeout=cfg.tvdb.timeout,
        max_retries=cfg.tvdb.max_retries,
        cache_dir=cfg.tvdb.cache_dir if cfg.tvdb.cache_expiration > 0 else None,
        cache_expiration=cfg.tvdb.cache_expiration,
    )


def run(args: argparse.Namespace, cfg: AppCfg, client: TVDBClient) -> None:
    """The whole batch: search, plan, select, confirm, rename."""
    directory: Path = args.dir

    client.login()
    series = choose_series(client.search_series(args.series), cfg.tvdb.language)
    series_name = series.display_name(cfg.tvdb.language)

    console.print()
    console.print(styled(f"Selected: {series_name} {series.year}".rstrip(), "highlight"))
    logger.info("Series: %s (tvdb id %s)", series_name, series.tvdb_id)

    with console.status("Looking up episodes..."):
        plans = build_rename_plans(
            directory,
            series_name,
            lambda number: client.lookup_episode(series, number),
            cfg.extensions,
        )

    if not plans:
        console.print(styled("No valid files available to rename", "warn"))
        return

    if args.dry_run:
        render_plans(plans, "Rename plan (dry run)")
        console.print(styled("Dry run, no files have been renamed.", "dim"))
        return

    selected_idx = select_plans(plans, cfg.display)
    if not selected_idx:
        console.print(styled("Nothing selected, no files have been renamed.", "warn"))
        return

    selected = [plans[i] for i in selected_idx]
    if not confirm_renames(selected):
        console.print(styled("Rename cancelled, no files have been renamed.", "err"))
        return

    results = execute_renames(directory, selected, on_result=report_result)
    success_count = count_successes(results)

    console.print()
    console.print(styled(f"✔  Successfully renamed {success_count} file(s)", "ok"))
    logger.info("Renamed %d of %d selected file(s)", success_count, len(selected))

    if args.manifest:
        try:
            path = write_manifest(results, directory, args.manifest)
            console.print(styled(f"📋 Manifest saved: {path}", "dim"))
        except OSError as e:
            print_error(f"Could not write manifest: {e}")


def render_header(cfg: AppCfg, args: argparse.Namespace, log_file: Path | None) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("key", style="k")
    table.add_column("val")
    table.add_row("Series", args.series)
    table.add_row("Directory", str(args.dir))
    table.add_row("Extensions", ", ".join(cfg.extensions))
    table.add_row("Language", cfg.tvdb.language)
    table.add_row("Log", str(log_file) if log_file else "[dim]disabled[/]")

    console.rule("[title]TVDB Renamer[/]")
    console.print(Panel(table, title="📺 Run", border_style="magenta", box=box.ROUNDED))


def main() -> None:
    args = parse_args()

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print_error(str(e))
        raise SystemExit(1)

    log_file = setup_logging(cfg.log_dir, verbose=args.verbose)
    render_header(cfg, args, log_file)

    if not args.dir.is_dir():
        print_error(f"Not a directory: {args.dir}")
        raise SystemExit(1)

    if cfg.tvdb.cache_expiration > 0:
        cleaned = cleanup_expired_cache(cfg.tvdb.cache_dir, max_age_hours=7 * 24)
        if cleaned:
            logger.debug("Cleaned up %d expired cache files", cleaned)

    try:
        client = make_client(cfg)
    except ConfigError as e:
        print_error(str(e))
        raise SystemExit(1)

    try:
        with client:
            run(args, cfg, client)
    except TVDBAuthError as e:
        print_error(f"Authentication failed: {e}")
        raise SystemExit(1)
    except TVDBError as e:
        print_error(str(e))
        raise SystemExit(1)
    except OSError as e:
        print_error(f"Cannot read directory {args.dir}: {e}")
        raise SystemExit(1)
    except (KeyboardInterrupt, EOFError):
        console.print("\n[dim]⏹ Interrupted. Bye.[/]")
        raise SystemExit(130)


if __name__ == "__main__":
    main()
