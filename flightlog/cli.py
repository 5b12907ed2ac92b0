"""Command-line tools for the flight-log pipeline.

  - ingest-logs: PDF -> page images -> Gemini extraction -> master_log.json + flight_log.csv
  - identity-fusion: flight_log.csv -> canonical passengers, aliases, review queue
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Annotated, List, Optional, Tuple

import google.generativeai as genai
import typer

from . import config
from .aggregator import aggregate
from .errors import ToolError
from .exporters import (
    alias_map_sorted,
    generate_report,
    generate_sql,
    save_candidates,
    save_csv_export,
    save_entities,
    save_json,
    save_master_log,
    save_page_result,
    save_text,
)
from .extraction_engine import VisionAgent
from .identity_fusion import IdentityFusion
from .logging_utils import log_event, new_run_id
from .models import FusionConfig, MatchType, PageExtractionResult, SplitConfig
from .passenger_names import names_from_csv, ranked
from .pdf_processor import PDFProcessor, cleanup_pages, collect_existing_images, split_pdf
from .pipeline import PageJob, number_pages, process_images_concurrent

logger = logging.getLogger("flightlog.cli")

TOP_NAMES_SHOWN = 20
REVIEW_SHOWN = 30
UNMAPPED_EXPORTED = 50

ingest_app = typer.Typer(help="Extract flight data from scanned PDF flight logs using AI vision", add_completion=False)
fusion_app = typer.Typer(help="Resolve passenger identities from flight log data", add_completion=False)


class ExportFormat(str, Enum):
    json = "json"
    sql = "sql"
    both = "both"


def _fail(message: str, code: int = 1) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code=code)


# ---------------- ingest-logs ----------------


def _resolve_pages(
    pdf: Path,
    pages_dir: Path,
    dpi: int,
    start_page: Optional[int],
    end_page: Optional[int],
    skip_split: bool,
) -> List[PageJob]:
    total = PDFProcessor.page_count(pdf)
    start = start_page or 1
    end = end_page or total
    if start < 1 or end < start or end > total:
        raise typer.BadParameter(f"page range {start}-{end} is outside 1-{total}")

    typer.echo(f"PDF has {total} pages total; processing pages {start} to {end}")

    if skip_split:
        existing = [(p, n) for p, n in collect_existing_images(pages_dir) if start <= n <= end]
        typer.echo(f"Skipping PDF split, reusing {len(existing)} existing page images")
        return list(existing)

    paths = split_pdf(pdf, pages_dir, SplitConfig(dpi=dpi, page_range=(start, end)))
    typer.echo(f"Created {len(paths)} page images")
    return number_pages(paths, start)


def _progress(total: int):
    seen = {"n": 0}

    def report(result: PageExtractionResult) -> None:
        seen["n"] += 1
        status = "error" if result.error else f"{len(result.entries)} entries"
        typer.echo(f"  [{seen['n']}/{total}] page {result.page_number}: {status}")

    return report


@ingest_app.command()
def ingest(
    pdf: Annotated[Path, typer.Option("--pdf", "-p", exists=True, dir_okay=False, help="PDF file to process")],
    concurrency: Annotated[int, typer.Option("--concurrency", "-c", min=1, help="Concurrent API requests")] = config.DEFAULT_CONCURRENCY,
    output: Annotated[Path, typer.Option("--output", "-o", help="Output directory")] = Path("./output"),
    api_key: Annotated[Optional[str], typer.Option("--api-key", "-k", help="Gemini API key (or GEMINI_API_KEY)")] = None,
    dpi: Annotated[int, typer.Option("--dpi", min=1, help="Render resolution for page images")] = config.DEFAULT_DPI,
    start_page: Annotated[Optional[int], typer.Option("--start-page", min=1, help="First page (1-indexed)")] = None,
    end_page: Annotated[Optional[int], typer.Option("--end-page", min=1, help="Last page (inclusive)")] = None,
    keep_images: Annotated[bool, typer.Option("--keep-images", help="Keep page images after processing")] = False,
    save_page_results: Annotated[bool, typer.Option("--save-page-results", help="Write page_NNN.json per page")] = False,
    skip_split: Annotated[bool, typer.Option("--skip-split", help="Reuse existing page images")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Split only, no API calls")] = False,
) -> None:
    """Split a scanned flight-log PDF and extract every page with Gemini Vision."""
    run_id = new_run_id()
    key = config.resolve_api_key(api_key)
    if not dry_run and not key:
        raise _fail("No API key provided. Use --api-key or set GEMINI_API_KEY", code=2)

    temp_dir = output / "temp"
    pages_dir = temp_dir / "pages"
    results_dir = output / "results"
    pages_dir.mkdir(parents=True, exist_ok=True)

    log_event(logger, "ingest_started", pdf=str(pdf), output=str(output), concurrency=concurrency, run=run_id)

    try:
        jobs = _resolve_pages(pdf, pages_dir, dpi, start_page, end_page, skip_split)
    except ToolError as e:
        log_event(logger, "ingest_aborted", level=logging.ERROR, error=str(e))
        raise _fail(str(e))

    if dry_run:
        typer.echo(f"Dry run complete. Page images saved to: {pages_dir}")
        return

    agent = VisionAgent(key, model=config.MODEL)
    results = asyncio.run(process_images_concurrent(agent, jobs, concurrency, on_result=_progress(len(jobs))))

    if save_page_results:
        for result in results:
            save_page_result(result, results_dir)

    log = aggregate(results)

    master_path = save_master_log(log, output / "master_log.json")
    csv_path = save_csv_export(log, output / "flight_log.csv")

    typer.echo(f"Total entries extracted: {log.total_entries}")
    typer.echo(f"Pages with errors: {log.pages_with_errors}")
    typer.echo(f"Unique aircraft: {len(log.unique_aircraft)}")
    typer.echo(f"Unique airports: {len(log.unique_airports)}")
    if log.date_range:
        typer.echo(f"Date range: {log.date_range[0]} to {log.date_range[1]}")
    typer.echo(f"Master JSON: {master_path}")
    typer.echo(f"CSV export: {csv_path}")

    if not keep_images:
        try:
            cleanup_pages(temp_dir)
        except OSError as e:
            log_event(logger, "cleanup_failed", level=logging.WARNING, path=str(temp_dir), error=str(e))

    for err in log.processing_errors:
        typer.echo(f"  Page {err.page_number}: {err.error}", err=True)

    log_event(
        logger,
        "ingest_completed",
        entries=log.total_entries,
        pages=log.pages_processed,
        pages_with_errors=log.pages_with_errors,
    )


# ---------------- identity-fusion ----------------


@fusion_app.command()
def fuse(
    csv_path: Annotated[Path, typer.Option("--csv", exists=True, dir_okay=False, help="Flight log CSV")],
    output: Annotated[Path, typer.Option("--output", "-o", help="Output directory")] = Path("./identity_output"),
    api_key: Annotated[Optional[str], typer.Option("--api-key", "-k", help="Gemini API key (or GEMINI_API_KEY)")] = None,
    auto_merge: Annotated[bool, typer.Option("--auto-merge", help="Apply high-confidence merges")] = False,
    fuzzy_threshold: Annotated[float, typer.Option("--fuzzy-threshold", min=0.0, max=1.0)] = 0.85,
    auto_merge_threshold: Annotated[float, typer.Option("--auto-merge-threshold", min=0.0, max=1.0)] = 0.95,
    use_ai: Annotated[bool, typer.Option("--use-ai", help="Ask Gemini about unmapped names")] = False,
    export_format: Annotated[ExportFormat, typer.Option("--format", help="json, sql or both")] = ExportFormat.both,
) -> None:
    """Group passenger name variants into canonical identities."""
    new_run_id()
    output.mkdir(parents=True, exist_ok=True)

    name_counts = names_from_csv(csv_path)
    names: List[Tuple[str, int]] = ranked(name_counts)
    typer.echo(f"Found {len(names)} unique names")
    for i, (name, count) in enumerate(names[:TOP_NAMES_SHOWN], 1):
        typer.echo(f"  {i:2}. {name} ({count} flights)")

    fusion = IdentityFusion(FusionConfig(fuzzy_threshold=fuzzy_threshold, auto_merge_threshold=auto_merge_threshold))
    candidates = fusion.analyze(names)

    if use_ai:
        key = config.resolve_api_key(api_key)
        if not key:
            raise _fail("--use-ai needs --api-key or GEMINI_API_KEY", code=2)
        config.configure_gemini(key)
        pending = fusion.unmapped_names(names, candidates)
        ai_candidates = asyncio.run(fusion.infer_with_ai(genai.GenerativeModel(config.MODEL), pending))
        typer.echo(f"AI suggested {len(ai_candidates)} additional candidates")
        candidates.extend(ai_candidates)

    auto = [c for c in candidates if c.auto_merge]
    review = [c for c in candidates if not c.auto_merge]
    typer.echo(f"Entities created: {len(fusion.entities)}")
    typer.echo(f"Auto-merge candidates: {len(auto)}")
    typer.echo(f"Manual review needed: {len(review)}")

    for c in auto:
        typer.echo(f"  {c.source_name} -> {c.target_canonical_name} ({c.match_type.value}: {c.similarity_score:.2f})")

    if auto_merge:
        for c in auto:
            fusion.apply_merge(c)
        typer.echo(f"Applied {len(auto)} auto-merges")

    for i, c in enumerate(review[:REVIEW_SHOWN], 1):
        typer.echo(f"  {i:2}. {c.source_name} -> {c.target_canonical_name} ({c.match_type.value}: {c.similarity_score:.2f})")
    if len(review) > REVIEW_SHOWN:
        typer.echo(f"  ... and {len(review) - REVIEW_SHOWN} more")

    unmapped = fusion.unmapped_names(names, candidates)[:UNMAPPED_EXPORTED]
    aliases = alias_map_sorted(fusion.export_aliases())

    if export_format in (ExportFormat.json, ExportFormat.both):
        save_json(aliases, output / "aliases.json")
        save_entities(fusion.get_entities(), output / "entities.json")
        save_candidates(candidates, output / "merge_candidates.json")
    if export_format in (ExportFormat.sql, ExportFormat.both):
        save_text(generate_sql(aliases), output / "apply_aliases.sql")

    report = generate_report(fusion.get_entities(), candidates, unmapped, total_names=len(names))
    save_text(report, output / "fusion_report.md")

    log_event(
        logger,
        "fusion_run_completed",
        names=len(names),
        entities=len(fusion.entities),
        candidates=len(candidates),
        ai_candidates=sum(1 for c in candidates if c.match_type == MatchType.AI_INFERRED),
        unmapped=len(unmapped),
    )
    typer.echo(f"Identity fusion complete. Results in {output}")


def ingest_main() -> None:
    ingest_app()


def fusion_main() -> None:
    fusion_app()
