"""Artifacts written by the two command-line tools."""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from .logging_utils import log_event
from .models import MasterFlightLog, MatchType, MergeCandidate, PageExtractionResult, PersonEntity

logger = logging.getLogger("flightlog.exporters")

PathLike = Union[str, Path]

CSV_COLUMNS = ["date", "from", "to", "aircraft_registration", "passengers", "flight_number"]

REPORT_ENTITY_LIMIT = 50
REPORT_REVIEW_LIMIT = 50
REPORT_UNMAPPED_LIMIT = 100

_MATCH_LABELS = {
    MatchType.EXACT_MATCH: "Exact",
    MatchType.ABBREVIATION: "Abbreviation",
    MatchType.SUBSTRING: "Substring",
    MatchType.FUZZY_MATCH: "Fuzzy",
    MatchType.AI_INFERRED: "AI",
}


def _write(path: PathLike, text: str) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    log_event(logger, "artifact_written", path=str(p), bytes=len(text))
    return p


def save_text(text: str, path: PathLike) -> Path:
    return _write(path, text)


# ---------------- extraction artifacts ----------------


def save_master_log(log: MasterFlightLog, path: PathLike) -> Path:
    return _write(path, log.model_dump_json(by_alias=True, indent=2))


def export_to_csv(log: MasterFlightLog) -> str:
    """Rows lacking either airport are left out of the CSV (they stay in the JSON)."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    buf.write(",".join(CSV_COLUMNS) + "\n")

    for e in log.entries:
        if not e.from_ or not e.to:
            continue
        writer.writerow(
            [
                e.date or "",
                e.from_,
                e.to,
                e.aircraft_registration or "",
                e.passengers or "",
                e.flight_number or "",
            ]
        )
    return buf.getvalue()


def save_csv_export(log: MasterFlightLog, path: PathLike) -> Path:
    return _write(path, export_to_csv(log))


def page_result_filename(page_number: int) -> str:
    return f"page_{page_number:03d}.json"


def save_page_result(result: PageExtractionResult, directory: PathLike) -> Path:
    return _write(Path(directory) / page_result_filename(result.page_number), result.model_dump_json(by_alias=True, indent=2))


def load_page_results(directory: PathLike) -> List[PageExtractionResult]:
    results: List[PageExtractionResult] = []
    for path in sorted(Path(directory).glob("page_*.json")):
        try:
            results.append(PageExtractionResult.model_validate_json(path.read_text(encoding="utf-8")))
        except ValidationError as e:
            log_event(logger, "page_result_unreadable", level=logging.WARNING, path=str(path), error=str(e))
    results.sort(key=lambda r: r.page_number)
    return results


# ---------------- identity artifacts ----------------


def save_json(data: object, path: PathLike) -> Path:
    return _write(path, json.dumps(data, indent=2, ensure_ascii=False, default=str))


def save_entities(entities: Sequence[PersonEntity], path: PathLike) -> Path:
    return save_json([e.model_dump(mode="json") for e in entities], path)


def save_candidates(candidates: Sequence[MergeCandidate], path: PathLike) -> Path:
    return save_json([c.model_dump(mode="json") for c in candidates], path)


def _sql_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def generate_sql(aliases: Mapping[str, str], table: str = "passenger_mappings") -> str:
    lines = [
        "-- Identity Fusion: Apply Passenger Aliases",
        "-- Generated by identity-fusion",
        "-- Review before executing!",
        "",
        "BEGIN TRANSACTION;",
        "",
    ]
    for alias, canonical in sorted(aliases.items()):
        lines.append(
            f"INSERT OR REPLACE INTO {table} (abbreviation, full_name, updated_at) "
            f"VALUES ({_sql_quote(alias)}, {_sql_quote(canonical)}, datetime('now'));"
        )
    lines += ["", "COMMIT;", ""]
    return "\n".join(lines)


def generate_report(
    entities: Sequence[PersonEntity],
    candidates: Sequence[MergeCandidate],
    unmapped: Sequence[Tuple[str, int]],
    total_names: int,
    generated_at: Optional[datetime] = None,
) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    out: List[str] = [
        "# Identity Fusion Report",
        "",
        f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        "",
        "## Summary",
        "",
        f"- **Total unique names:** {total_names}",
        f"- **Entities created:** {len(entities)}",
        f"- **Merge candidates:** {len(candidates)}",
        f"- **Unmapped names:** {len(unmapped)}",
        "",
        "## Resolved Entities",
        "",
    ]

    for entity in sorted(entities, key=lambda e: e.flight_count, reverse=True)[:REPORT_ENTITY_LIMIT]:
        out.append(f"### {entity.canonical_name} ({entity.flight_count} flights)")
        if len(entity.aliases) > 1:
            out.append("**Aliases:** " + ", ".join(entity.aliases))
        out.append("")

    review = [c for c in candidates if not c.auto_merge]
    if review:
        out += [
            "## Manual Review Required",
            "",
            "| Source | Target | Match Type | Similarity |",
            "|--------|--------|------------|------------|",
        ]
        for c in review[:REPORT_REVIEW_LIMIT]:
            out.append(
                f"| {c.source_name} | {c.target_canonical_name} | {_MATCH_LABELS[c.match_type]} | {c.similarity_score:.2f} |"
            )
        out.append("")

    if unmapped:
        out += ["## Unmapped Names", "", "These names could not be matched to any entity:", ""]
        for name, count in list(unmapped)[:REPORT_UNMAPPED_LIMIT]:
            out.append(f"- {name} ({count} flights)")
        out.append("")

    return "\n".join(out) + "\n"


def alias_map_sorted(aliases: Mapping[str, str]) -> Dict[str, str]:
    return dict(sorted(aliases.items()))
