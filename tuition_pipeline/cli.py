#!/usr/bin/env python3
"""Tuition extraction CLI.

Runs the extract -> verify -> retry pipeline for one (school, program)
pair or for a targets file, and reports the daily Gemini quota.

Usage:
    tuition-extract --school "Northwestern University" --program "Executive MBA"
    tuition-extract --targets targets.txt --workers 5     # "School | Program" per line
    tuition-extract --targets targets.txt --no-ai-verify  # Rule-based verification only
    tuition-extract --quota                               # Today's quota usage
    tuition-extract --quota-history 14                    # Last 14 days of usage
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import PipelineConfig
from .models.extraction import ExtractionRequest
from .models.quota import QuotaStatus
from .models.verification import VerificationStatus
from .pipeline.pipeline import PipelineOutcome, TuitionPipeline
from .utils.logger import configure_global_logging

console = Console()

STATUS_STYLE = {
    VerificationStatus.VERIFIED: "[green]verified[/green]",
    VerificationStatus.NEEDS_REVIEW: "[yellow]needs_review[/yellow]",
    VerificationStatus.RETRY_RECOMMENDED: "[yellow]retry_recommended[/yellow]",
    VerificationStatus.FAILED: "[red]failed[/red]",
}


def parse_targets(lines: list[str]) -> list[ExtractionRequest]:
    """Parse "School | Program" lines. Blank lines and # comments are skipped."""
    requests = []
    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        school, sep, program = line.partition("|")
        if not sep:
            raise ValueError(f"line {line_no}: expected 'School | Program', got {line!r}")
        try:
            requests.append(ExtractionRequest(school=school, program=program))
        except ValidationError as e:
            raise ValueError(f"line {line_no}: {e.errors()[0]['msg']}") from e
    return requests


def _money(value: Optional[float]) -> str:
    return f"${value:,.0f}" if value is not None else "-"


def display_outcomes(outcomes: list[PipelineOutcome], verbose: bool = False) -> None:
    """Render outcomes as a summary panel and a results table."""
    console.print()

    counts = {status: 0 for status in VerificationStatus}
    for outcome in outcomes:
        counts[outcome.verification.status] += 1
    total_cost = sum(o.cost_usd for o in outcomes)

    summary = (
        f"Targets: {len(outcomes)}\n"
        f"Verified: {counts[VerificationStatus.VERIFIED]}\n"
        f"Needs review: {counts[VerificationStatus.NEEDS_REVIEW]}\n"
        f"Failed: {counts[VerificationStatus.FAILED]}\n"
        f"Retries: {sum(o.retry_count for o in outcomes)}\n"
        f"Cost: ${total_cost:.4f}"
    )
    console.print(Panel(summary, title="Extraction Summary", border_style="blue"))

    if not outcomes:
        return

    table = Table(title="Tuition Results")
    table.add_column("School", style="cyan")
    table.add_column("Program")
    table.add_column("Tuition", justify="right")
    table.add_column("Year")
    table.add_column("Status", justify="center")
    table.add_column("Confidence", justify="center")
    table.add_column("Complete", justify="right")
    table.add_column("Retries", justify="right")

    for outcome in outcomes:
        school = outcome.request.school
        table.add_row(
            school[:30] + "..." if len(school) > 30 else school,
            outcome.request.program,
            _money(outcome.candidate.tuition_amount),
            outcome.candidate.academic_year or "-",
            STATUS_STYLE[outcome.verification.status],
            outcome.verification.confidence.value,
            f"{outcome.verification.completeness_score}%",
            str(outcome.retry_count),
        )
    console.print(table)

    if verbose:
        for outcome in outcomes:
            console.print()
            console.print(f"[bold]{outcome.request}[/bold]")
            console.print(f"  {outcome.verification.reasoning}")
            if outcome.candidate.source_url:
                console.print(f"  Source: {outcome.candidate.source_url}")
            for issue in outcome.verification.issues:
                console.print(f"  [red]-[/red] {issue}")
            for note in outcome.verification.source_notes:
                console.print(f"  [dim]{note}[/dim]")


def display_quota(status: QuotaStatus) -> None:
    color = "red" if status.usage_percent >= 95 else "yellow" if status.usage_percent >= 80 else "green"
    summary = (
        f"Date (UTC): {status.quota_date}\n"
        f"Used: {status.used:,} / {status.limit:,}\n"
        f"Remaining: {status.remaining:,}\n"
        f"Usage: [{color}]{status.usage_percent:.2f}%[/{color}]"
    )
    console.print(Panel(summary, title="Gemini Daily Quota", border_style="blue"))


def display_quota_history(history: list[QuotaStatus]) -> None:
    table = Table(title="Quota History")
    table.add_column("Date", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Usage", justify="right")
    for status in history:
        table.add_row(str(status.quota_date), f"{status.used:,}", f"{status.limit:,}", f"{status.usage_percent:.2f}%")
    console.print(table)


def main():
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Extract and verify program tuition with Gemini search grounding")
    parser.add_argument("--school", type=str, help="School name (use with --program)")
    parser.add_argument("--program", type=str, help="Program name (use with --school)")
    parser.add_argument(
        "--targets",
        type=Path,
        help="File with one 'School | Program' pair per line",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Concurrent targets in a batch (default: TUITION_BATCH_SIZE or 10)",
    )
    parser.add_argument(
        "--no-ai-verify",
        action="store_true",
        help="Skip the AI cross-verifier and use rule-based verification only",
    )
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Do not write attempts to extraction_results",
    )
    parser.add_argument(
        "--quota",
        action="store_true",
        help="Show today's quota usage and exit",
    )
    parser.add_argument(
        "--quota-history",
        type=int,
        metavar="DAYS",
        help="Show quota usage for the last DAYS days and exit",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the pipeline tables if missing",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print outcomes as JSON instead of tables",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show reasoning, issues and source notes per target",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()
    configure_global_logging(args.log_level, phase="Extract")

    if args.init_db:
        from .db.client import check_connection, get_settings, init_schema

        if not check_connection():
            settings = get_settings()
            console.print(f"[red]Cannot reach database {settings.database} at {settings.host}:{settings.port}[/red]")
            sys.exit(2)
        init_schema()
        console.print("[green]Schema ready[/green]")

    try:
        config = PipelineConfig.from_env(
            batch_size=args.workers,
            ai_verification=False if args.no_ai_verify else None,
            persist_results=False if args.no_persist else None,
        )
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        sys.exit(2)

    if args.quota or args.quota_history:
        # Quota reporting needs only the store, not Gemini
        from .db.repository import QuotaRepository
        from .services.quota_guard import QuotaGuard

        guard = QuotaGuard(QuotaRepository(), limit=config.daily_quota_limit)
        if args.quota_history:
            display_quota_history(guard.get_quota_history(args.quota_history))
        else:
            display_quota(guard.get_quota_status())
        return

    if args.targets:
        try:
            requests = parse_targets(args.targets.read_text().splitlines())
        except (OSError, ValueError) as e:
            console.print(f"[red]Cannot read targets: {e}[/red]")
            sys.exit(2)
    elif args.school and args.program:
        requests = [ExtractionRequest(school=args.school, program=args.program)]
    else:
        parser.error("provide --school and --program, --targets, or --quota")

    if not requests:
        console.print("[yellow]No targets to process[/yellow]")
        return

    try:
        pipeline = TuitionPipeline.from_config(config)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)

    if not args.json:
        console.print("[bold]Tuition Extraction[/bold]")
        console.print(f"Targets: {len(requests)} | Workers: {config.batch_size} | AI verify: {config.ai_verification}")

    try:
        if len(requests) == 1:
            outcomes = [pipeline.run(requests[0])]
        else:
            outcomes = pipeline.run_batch(requests, batch_size=config.batch_size)
    except KeyboardInterrupt:
        cancelled = pipeline.last_batch_stats.get("total_cancelled", 0)
        console.print(f"\n[yellow]Interrupted: {cancelled} pending targets cancelled[/yellow]")
        sys.exit(130)

    if args.json:
        print(json.dumps([o.model_dump(mode="json") for o in outcomes], indent=2))
    else:
        display_outcomes(outcomes, verbose=args.verbose)

    # Exit with error if any target failed outright
    if any(o.verification.status == VerificationStatus.FAILED for o in outcomes):
        sys.exit(1)


if __name__ == "__main__":
    main()
