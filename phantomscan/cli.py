from __future__ import annotations

import argparse
import datetime as dt
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn, TimeRemainingColumn
from rich.table import Table

from .classifier import is_risky
from .console import RichLogger
from .input_sources import iter_source_units
from .models import CATEGORY_RESOLVED, Finding, SourceUnit
from .registry import DEFAULT_REGISTRY_URL, NpmRegistryClient, RegistrySnapshot, RegistryUnavailableError, load_registry
from .results import ResultWriter, summarize
from .ruleset import RiskRuleset, RulesetError, default_ruleset, load_ruleset
from .scanner import UnitResult, collect_package_names, default_thread_count, scan

DEFAULT_MAX_FILE_MB = 25

CATEGORY_STYLES = {
    "vulnerable": "bold red",
    "missing": "red",
    "unclaimed": "bold magenta",
    "typosquat-candidate": "yellow",
    "unverified": "cyan",
    "resolved": "green",
}


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="phantomscan",
        description="Find phantom, squattable and typosquatted npm package references in a codebase.",
    )
    ap.add_argument("paths", nargs="+", help="Files, folders or ZIP archives to scan.")
    ap.add_argument("--registry", default=None, help="Registry snapshot JSON file.")
    ap.add_argument(
        "--online",
        action="store_true",
        help="Fetch registry records for every referenced package before classifying.",
    )
    ap.add_argument("--registry-url", default=DEFAULT_REGISTRY_URL, help="Registry base URL for --online.")
    ap.add_argument("--ruleset", default=None, help="Risk ruleset JSON file (default: built-in ruleset).")
    ap.add_argument(
        "--threads",
        type=int,
        default=default_thread_count(),
        help="Worker threads (default: min(32, cpu+4)).",
    )
    ap.add_argument("--out", default=None, help="Write findings.jsonl and summary.json into this folder.")
    ap.add_argument("--hide-resolved", action="store_true", help="Leave resolved packages out of the table.")
    ap.add_argument(
        "--max-file-mb",
        type=int,
        default=DEFAULT_MAX_FILE_MB,
        help="Skip files larger than this many MB (default: 25).",
    )
    ap.add_argument("--follow-symlinks", action="store_true", help="Follow symlinks while walking folders.")
    ap.add_argument("-v", "--verbose", action="store_true", help="Verbose logging.")
    ap.add_argument("-s", "--silent", action="store_true", help="Only print the findings table.")
    return ap


def _load_ruleset(path: Optional[str], logger: RichLogger) -> RiskRuleset:
    if not path:
        return default_ruleset()
    ruleset = load_ruleset(Path(path))
    logger.info(f"Ruleset: {path} (version {ruleset.version})")
    return ruleset


def _load_registry(
    args,
    units: Sequence[SourceUnit],
    ruleset: RiskRuleset,
    logger: RichLogger,
) -> Optional[RegistrySnapshot]:
    snapshot = load_registry(Path(args.registry)) if args.registry else None
    if snapshot is not None:
        logger.info(f"Registry snapshot: {args.registry} ({len(snapshot.records)} packages)")
    if not args.online:
        return snapshot

    names = collect_package_names(units, ruleset, threads=max(1, args.threads), logger=logger)
    known = set(snapshot.records) if snapshot is not None else set()
    pending = [name for name in names if name not in known]
    logger.info(f"Registry: fetching {len(pending)} package records from {args.registry_url}")
    client = NpmRegistryClient(base_url=args.registry_url)
    return client.fetch_snapshot(pending, logger, base=snapshot)


def _scan_with_progress(
    units: List[SourceUnit],
    registry: RegistrySnapshot,
    ruleset: RiskRuleset,
    threads: int,
    console: Console,
    logger: RichLogger,
) -> List[Finding]:
    if not units:
        return list(scan(units, registry, ruleset, threads=threads, logger=logger))

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold]Scanning files"),
        BarColumn(bar_width=None),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
        disable=logger.silent,
    )

    with progress:
        task_id = progress.add_task("scan", total=len(units))

        def on_unit(result: UnitResult) -> None:
            if result.partial:
                logger.debug(f"Partial scan: {result.unit_id}")
            progress.advance(task_id)

        findings = scan(units, registry, ruleset, threads=threads, logger=logger, on_unit=on_unit)
    return list(findings)


def _first_location(finding: Finding) -> str:
    if not finding.references:
        return "-"
    ref = finding.references[0]
    return f"{ref.unit_id}:{ref.line_no}"


def _findings_table(findings: Sequence[Finding], hide_resolved: bool) -> Table:
    table = Table(title="Package References", header_style="bold")
    table.add_column("Package", style="bold")
    table.add_column("Categories")
    table.add_column("Confidence", justify="right")
    table.add_column("Refs", justify="right")
    table.add_column("First location", overflow="fold")
    for finding in findings:
        if hide_resolved and finding.categories == frozenset({CATEGORY_RESOLVED}):
            continue
        labels = ", ".join(
            f"[{CATEGORY_STYLES.get(c, '')}]{c}[/]" for c in sorted(finding.categories)
        )
        if finding.nearest_popular:
            labels += f" (~{finding.nearest_popular})"
        table.add_row(
            finding.package,
            labels,
            f"{finding.confidence:.2f}",
            str(len(finding.references)),
            _first_location(finding),
        )
    return table


def run_scan(args) -> int:
    console = Console()
    logger = RichLogger(console=console, verbose=args.verbose, silent=args.silent)
    started_at = dt.datetime.now().isoformat(timespec="seconds")

    if args.max_file_mb <= 0:
        logger.error("--max-file-mb must be positive.")
        return 2
    if not args.registry and not args.online:
        logger.error("No registry snapshot: pass --registry FILE or --online.")
        return 2

    paths = [Path(p) for p in args.paths]
    max_file_bytes = args.max_file_mb * 1024 * 1024
    try:
        units = list(iter_source_units(paths, logger, max_file_bytes, follow_symlinks=args.follow_symlinks))
    except FileNotFoundError as exc:
        logger.error(f"Input not found: {exc}")
        return 2
    logger.info(f"Collected {len(units)} files from {len(paths)} input(s)")

    try:
        ruleset = _load_ruleset(args.ruleset, logger)
        registry = _load_registry(args, units, ruleset, logger)
        findings = _scan_with_progress(units, registry, ruleset, max(1, args.threads), console, logger)
    except (RegistryUnavailableError, RulesetError) as exc:
        logger.error(str(exc))
        return 2

    console.print(_findings_table(findings, args.hide_resolved))
    risky = [f for f in findings if is_risky(f)]
    if risky:
        logger.warn(f"{len(risky)} risky package(s) out of {len(findings)}")
    else:
        logger.done(f"No risky packages among {len(findings)}")

    if args.out:
        run_metadata: Dict[str, object] = {
            "input": [str(p) for p in paths],
            "registry": args.registry,
            "online": args.online,
            "ruleset": args.ruleset,
            "ruleset_version": ruleset.version,
            "settings": {
                "threads": args.threads,
                "max_file_mb": args.max_file_mb,
                "follow_symlinks": args.follow_symlinks,
            },
            "units_total": len(units),
            "summary": summarize(findings),
            "started_at": started_at,
        }
        run_metadata["finished_at"] = dt.datetime.now().isoformat(timespec="seconds")
        writer = ResultWriter(out_dir=Path(args.out), logger=logger)
        writer.write_all(findings, run_metadata)

    return 1 if risky else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    return run_scan(args)


if __name__ == "__main__":
    raise SystemExit(main())
