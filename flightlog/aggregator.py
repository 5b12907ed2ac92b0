"""Merge page results into one master log and repair common OCR misreads.

Cleaning is shape-driven: a tail number is ``N`` followed by digits and an
optional letter suffix, an airport code is letters only. The confusion tables
and the airport allow-list live in ``reference_data`` so new alphabets or
jurisdictions only need new data.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .logging_utils import log_event
from .models import FlightLogEntry, MasterFlightLog, PageExtractionResult, ProcessingError
from .reference_data import (
    KNOWN_AIRPORTS,
    LIKELY_DIGIT,
    LIKELY_LETTER,
    TAIL_SUFFIX_EXCLUDED,
    TAIL_SUFFIX_MAX_LETTERS,
    US_REGISTRATION_PREFIX,
)

logger = logging.getLogger("flightlog.aggregator")

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y")


class OcrCorrector:
    def __init__(
        self,
        known_airports: Iterable[str] = KNOWN_AIRPORTS,
        known_tail_numbers: Iterable[str] = (),
        likely_digit: Mapping[str, str] = LIKELY_DIGIT,
        likely_letter: Mapping[str, str] = LIKELY_LETTER,
    ) -> None:
        self.known_airports: Set[str] = {a.strip().upper() for a in known_airports}
        self.known_tail_numbers: Set[str] = {t.strip().upper() for t in known_tail_numbers}
        self._digit = dict(likely_digit)
        self._letter = dict(likely_letter)

    def add_known_airports(self, airports: Iterable[str]) -> None:
        self.known_airports.update(a.strip().upper() for a in airports)

    def add_known_tail_numbers(self, tail_numbers: Iterable[str]) -> None:
        self.known_tail_numbers.update(t.strip().upper() for t in tail_numbers)

    def likely_digit(self, c: str) -> str:
        return self._digit.get(c, c)

    def likely_letter(self, c: str) -> str:
        return self._letter.get(c, c.upper())

    @staticmethod
    def _suffix_length(body: str) -> int:
        """Trailing letters that form the registration suffix; the rest must be digits."""
        n = 0
        limit = min(TAIL_SUFFIX_MAX_LETTERS, len(body) - 1)
        while n < limit:
            c = body[len(body) - 1 - n]
            if not c.isalpha() or c in TAIL_SUFFIX_EXCLUDED:
                break
            n += 1
        return n

    def clean_tail_number(self, tail: str) -> str:
        cleaned = tail.strip().upper().replace(" ", "")

        if cleaned in self.known_tail_numbers:
            return cleaned

        # "N-908SE" is a transcription artifact, not part of the registration
        if cleaned.startswith(US_REGISTRATION_PREFIX + "-"):
            cleaned = cleaned[2:]

        if cleaned[:1].isdigit():
            cleaned = US_REGISTRATION_PREFIX + cleaned

        if cleaned.startswith(US_REGISTRATION_PREFIX) and len(cleaned) >= 2:
            body = cleaned[1:]
            split = len(body) - self._suffix_length(body)
            digits = "".join(self.likely_digit(c) for c in body[:split])
            letters = "".join(self.likely_letter(c) for c in body[split:])
            cleaned = US_REGISTRATION_PREFIX + digits + letters

        return cleaned

    def clean_airport_code(self, code: str) -> str:
        cleaned = code.strip().upper().replace(" ", "")

        if len(cleaned) < 3 or len(cleaned) > 4:
            return cleaned

        if cleaned in self.known_airports:
            return cleaned

        corrected = "".join(self.likely_letter(c) for c in cleaned)
        if corrected in self.known_airports:
            return corrected

        return cleaned

    @staticmethod
    def clean_passengers(passengers: str) -> Optional[str]:
        names = [p.strip() for p in passengers.split(";")]
        joined = "; ".join(n for n in names if n)
        return joined or None

    def clean_entry(self, entry: FlightLogEntry) -> FlightLogEntry:
        updates: Dict[str, Optional[str]] = {}
        if entry.aircraft_registration is not None:
            updates["aircraft_registration"] = self.clean_tail_number(entry.aircraft_registration)
        if entry.from_ is not None:
            updates["from_"] = self.clean_airport_code(entry.from_)
        if entry.to is not None:
            updates["to"] = self.clean_airport_code(entry.to)
        if entry.passengers is not None:
            updates["passengers"] = self.clean_passengers(entry.passengers)
        return entry.model_copy(update=updates)


def _parse_date(value: str) -> Optional[datetime]:
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return None


def determine_date_range(
    entries: Sequence[FlightLogEntry],
    parse_dates: bool = False,
) -> Optional[Tuple[str, str]]:
    """
    First and last non-empty date in entry order (assumes the logbook is
    chronological). With ``parse_dates`` the true min/max of parseable dates
    is used instead, falling back to first/last when nothing parses.
    """
    dates = [e.date for e in entries if e.date and e.date.strip()]
    if not dates:
        return None

    if parse_dates:
        parsed = [(d, _parse_date(d)) for d in dates]
        parsed = [(raw, dt) for raw, dt in parsed if dt is not None]
        if parsed:
            lo = min(parsed, key=lambda p: p[1])
            hi = max(parsed, key=lambda p: p[1])
            return lo[0], hi[0]

    return dates[0], dates[-1]


def aggregate(
    results: Sequence[PageExtractionResult],
    corrector: Optional[OcrCorrector] = None,
    parse_dates: bool = False,
) -> MasterFlightLog:
    corrector = corrector or OcrCorrector()

    all_entries: List[FlightLogEntry] = []
    processing_errors: List[ProcessingError] = []
    unique_aircraft: Set[str] = set()
    unique_airports: Set[str] = set()

    for result in results:
        if result.error is not None:
            processing_errors.append(ProcessingError(page_number=result.page_number, error=result.error))

        for raw in result.entries:
            entry = corrector.clean_entry(raw)
            if entry.source_page is None:
                entry.source_page = result.page_number

            if entry.aircraft_registration:
                unique_aircraft.add(entry.aircraft_registration)
            for code in (entry.from_, entry.to):
                if code:
                    unique_airports.add(code)

            all_entries.append(entry)

    # stable: page-internal order survives
    all_entries.sort(key=lambda e: e.source_page)

    log = MasterFlightLog(
        total_entries=len(all_entries),
        pages_processed=len(results),
        pages_with_errors=len(processing_errors),
        unique_aircraft=sorted(unique_aircraft),
        unique_airports=sorted(unique_airports),
        date_range=determine_date_range(all_entries, parse_dates=parse_dates),
        entries=all_entries,
        processing_errors=processing_errors,
    )

    log_event(
        logger,
        "aggregation_completed",
        entries=log.total_entries,
        pages=log.pages_processed,
        pages_with_errors=log.pages_with_errors,
        aircraft=len(log.unique_aircraft),
        airports=len(log.unique_airports),
    )
    return log
