"""Shared pytest fixtures for the flight-log pipeline tests.

Provides sample entries and page results, a scripted stand-in for the Gemini
client, and a fake poppler that renders N blank page files.
"""

from __future__ import annotations

import os
from pathlib import Path
from types import SimpleNamespace
from typing import List
from unittest.mock import AsyncMock

import pytest

from flightlog.models import FlightLogEntry, PageExtractionResult


def gemini_response(text: str) -> SimpleNamespace:
    """Object shaped like a google-generativeai response."""
    return SimpleNamespace(
        text=text,
        usage_metadata=SimpleNamespace(prompt_token_count=10, candidates_token_count=5, total_token_count=15),
    )


@pytest.fixture
def fake_client() -> SimpleNamespace:
    """Gemini client whose generate_content_async is an AsyncMock; set side_effect/return_value per test."""
    return SimpleNamespace(generate_content_async=AsyncMock(return_value=gemini_response("[]")))


@pytest.fixture
def page_image(tmp_path: Path) -> Path:
    path = tmp_path / "page_001.png"
    # PNG signature plus junk: enough for the extension fallback
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)
    return path


@pytest.fixture
def sample_entries() -> List[FlightLogEntry]:
    return [
        FlightLogEntry(date="1995-07-25", from_="PSP", to="CMH", aircraft_registration="N908JE", passengers="JEFFREY EPSTEIN; GM"),
        FlightLogEntry(date="1995-07-30", from_="CMH", to="TEB", aircraft_registration="N908JE", passengers="JE"),
    ]


@pytest.fixture
def page_results(sample_entries) -> List[PageExtractionResult]:
    return [
        PageExtractionResult(page_number=2, image_path="page_002.png", entries=[sample_entries[1]]),
        PageExtractionResult(page_number=1, image_path="page_001.png", entries=[sample_entries[0]]),
        PageExtractionResult(page_number=3, image_path="page_003.png", error="Gemini API error: timeout"),
    ]


@pytest.fixture
def fake_poppler(monkeypatch):
    """Patch pdf2image so a "PDF" has ``pages`` pages and renders empty files."""
    state = SimpleNamespace(pages=3, convert_calls=[])

    def fake_pdfinfo(pdf_path, *args, **kwargs):
        return {"Pages": state.pages}

    def fake_convert(pdf_path, dpi=200, fmt="png", first_page=None, last_page=None, output_folder=None, output_file="render", **kwargs):
        state.convert_calls.append(
            {"first_page": first_page, "last_page": last_page, "dpi": dpi, "fmt": fmt}
        )
        ext = "jpg" if fmt == "jpeg" else fmt
        folder = Path(output_folder)
        for n in range(first_page, last_page + 1):
            (folder / f"{output_file}-{n:02d}.{ext}").write_bytes(b"img")
        # like pdf2image: everything in the folder with the prefix and extension
        return [
            str(folder / name)
            for name in sorted(os.listdir(folder))
            if name.startswith(output_file) and name.split(".")[-1] == ext
        ]

    monkeypatch.setattr("flightlog.pdf_processor.pdfinfo_from_path", fake_pdfinfo)
    monkeypatch.setattr("flightlog.pdf_processor.convert_from_path", fake_convert)
    return state


@pytest.fixture
def fake_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "logs.pdf"
    path.write_bytes(b"%PDF-1.4\n%%EOF\n")
    return path
