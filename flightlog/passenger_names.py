from __future__ import annotations

import csv
import re
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .models import MasterFlightLog

# Remarks-column tokens that are not people
SKIP_PATTERNS = (
    "ABOVE", "BELOW", "CREW", "PAX", "PASSENGER", "RELOCATE",
    "FERRY", "REPO", "MAINTENANCE", "TEST", "TRAINING", "DEMO",
    "SHOW PLANE", "INQUIRIES", "FEMALE", "MALE", "ADULT", "CHILD",
)

DEFAULT_PASSENGER_COLUMN = 4
MIN_NAME_LENGTH = 2

_SPLIT_RE = re.compile(r"[;,|]")


def should_skip_name(name: str) -> bool:
    if any(pattern in name for pattern in SKIP_PATTERNS):
        return True

    alnum = [c for c in name if c.isalnum()]
    alpha = [c for c in alnum if c.isalpha()]
    # mostly numbers: a seat count or a page reference, not a person
    return bool(alnum) and len(alpha) / len(alnum) < 0.5


def split_passenger_field(value: str) -> List[str]:
    names = []
    for raw in _SPLIT_RE.split(value or ""):
        cleaned = " ".join(raw.upper().split())
        if len(cleaned) >= MIN_NAME_LENGTH and not should_skip_name(cleaned):
            names.append(cleaned)
    return names


def count_names(fields: Iterable[Optional[str]]) -> Dict[str, int]:
    counts: Counter = Counter()
    for field in fields:
        if field:
            counts.update(split_passenger_field(field))
    return dict(counts)


def _passenger_column(headers: List[str]) -> int:
    for idx, header in enumerate(headers):
        if "passenger" in header.lower():
            return idx
    return DEFAULT_PASSENGER_COLUMN


def names_from_csv(csv_path: Union[str, Path]) -> Dict[str, int]:
    with open(csv_path, newline="", encoding="utf-8-sig") as fh:
        reader = csv.reader(fh)
        headers = next(reader, None)
        if headers is None:
            return {}
        col = _passenger_column(headers)
        return count_names(row[col] for row in reader if len(row) > col)


def names_from_log(log: MasterFlightLog) -> Dict[str, int]:
    return count_names(e.passengers for e in log.entries)


def ranked(name_counts: Dict[str, int]) -> List[Tuple[str, int]]:
    return sorted(name_counts.items(), key=lambda nc: (-nc[1], nc[0]))
