"""End-to-end tests for the two typer commands with external services faked."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from flightlog import cli
from flightlog.models import FlightLogEntry, PageExtractionResult

runner = CliRunner()


class FakeAgent:
    def __init__(self, *args, **kwargs):
        self.pages = []

    async def extract(self, image_path, page_number):
        self.pages.append(page_number)
        if page_number == 2:
            return PageExtractionResult(page_number=2, image_path=str(image_path), error="Gemini API error: 503")
        return PageExtractionResult(
            page_number=page_number,
            image_path=str(image_path),
            entries=[
                FlightLogEntry(
                    date=f"1995-07-{page_number:02d}", from_="P5P", to="TEB",
                    aircraft_registration="N9O8SE", passengers="JE", source_page=page_number,
                )
            ],
        )


class TestIngest:
    def test_dry_run_splits_without_vision_calls(self, fake_poppler, fake_pdf, tmp_path, monkeypatch):
        agent_cls = MagicMock()
        monkeypatch.setattr(cli, "VisionAgent", agent_cls)
        out = tmp_path / "output"

        result = runner.invoke(
            cli.ingest_app,
            ["--pdf", str(fake_pdf), "--output", str(out), "--concurrency", "2", "--dry-run"],
        )

        assert result.exit_code == 0, result.output
        pages = sorted(p.name for p in (out / "temp" / "pages").iterdir())
        assert pages == ["page_001.png", "page_002.png", "page_003.png"]
        agent_cls.assert_not_called()
        assert not (out / "master_log.json").exists()

    def test_full_run_writes_outputs(self, fake_poppler, fake_pdf, tmp_path, monkeypatch):
        monkeypatch.setattr(cli, "VisionAgent", FakeAgent)
        out = tmp_path / "output"

        result = runner.invoke(
            cli.ingest_app,
            ["--pdf", str(fake_pdf), "-o", str(out), "-c", "2", "--api-key", "test-key", "--save-page-results"],
        )

        assert result.exit_code == 0, result.output
        master = json.loads((out / "master_log.json").read_text())
        assert master["total_entries"] == 2
        assert master["pages_with_errors"] == 1
        assert master["entries"][0]["from"] == "PSP"
        assert master["entries"][0]["aircraft_registration"] == "N908SE"

        csv_lines = (out / "flight_log.csv").read_text().splitlines()
        assert len(csv_lines) == 3
        assert sorted(p.name for p in (out / "results").iterdir()) == ["page_001.json", "page_002.json", "page_003.json"]
        assert not (out / "temp").exists()

    def test_keep_images(self, fake_poppler, fake_pdf, tmp_path, monkeypatch):
        monkeypatch.setattr(cli, "VisionAgent", FakeAgent)
        out = tmp_path / "output"

        result = runner.invoke(
            cli.ingest_app,
            ["--pdf", str(fake_pdf), "-o", str(out), "-k", "test-key", "--keep-images"],
        )

        assert result.exit_code == 0, result.output
        assert len(list((out / "temp" / "pages").iterdir())) == 3

    def test_page_range(self, fake_poppler, fake_pdf, tmp_path):
        fake_poppler.pages = 10
        out = tmp_path / "output"

        result = runner.invoke(
            cli.ingest_app,
            ["--pdf", str(fake_pdf), "-o", str(out), "--start-page", "4", "--end-page", "5", "--dry-run"],
        )

        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in (out / "temp" / "pages").iterdir()) == ["page_004.png", "page_005.png"]

    def test_page_range_past_end_is_usage_error(self, fake_poppler, fake_pdf, tmp_path):
        result = runner.invoke(
            cli.ingest_app,
            ["--pdf", str(fake_pdf), "-o", str(tmp_path / "o"), "--end-page", "9", "--dry-run"],
        )
        assert result.exit_code == 2

    def test_missing_api_key(self, fake_poppler, fake_pdf, tmp_path, monkeypatch):
        monkeypatch.setattr(cli.config, "GEMINI_API_KEY", None)
        result = runner.invoke(cli.ingest_app, ["--pdf", str(fake_pdf), "-o", str(tmp_path / "o")])
        assert result.exit_code == 2

    def test_tool_failure_exits_1(self, fake_pdf, tmp_path, monkeypatch):
        def boom(*args, **kwargs):
            raise OSError("pdfinfo: not found")

        monkeypatch.setattr("flightlog.pdf_processor.pdfinfo_from_path", boom)
        result = runner.invoke(cli.ingest_app, ["--pdf", str(fake_pdf), "-o", str(tmp_path / "o"), "--dry-run"])
        assert result.exit_code == 1

    def test_skip_split_reuses_images(self, fake_poppler, fake_pdf, tmp_path, monkeypatch):
        agent = FakeAgent()
        monkeypatch.setattr(cli, "VisionAgent", lambda *a, **k: agent)
        out = tmp_path / "output"
        pages = out / "temp" / "pages"
        pages.mkdir(parents=True)
        for n in (1, 3):
            (pages / f"page_{n:03d}.png").write_bytes(b"x")

        result = runner.invoke(
            cli.ingest_app,
            ["--pdf", str(fake_pdf), "-o", str(out), "-k", "test-key", "--skip-split"],
        )

        assert result.exit_code == 0, result.output
        assert fake_poppler.convert_calls == []
        assert sorted(agent.pages) == [1, 3]


@pytest.fixture
def flight_csv(tmp_path):
    rows = ["date,from,to,aircraft_registration,passengers,flight_number"]
    rows += ['"1995-07-01","PSP","TEB","N908JE","JEFFREY EPSTEIN",""'] * 6
    rows += ['"1995-07-02","TEB","PSP","N908JE","JE; MAXWILL",""'] * 2
    rows += ['"1995-07-03","TEB","PSP","N908JE","MAXWELL",""'] * 5
    rows += ['"1995-07-04","TEB","PSP","N908JE","KELLEN",""']
    path = tmp_path / "flight_log.csv"
    path.write_text("\n".join(rows) + "\n", encoding="utf-8")
    return path


class TestFuse:
    def test_writes_all_artifacts(self, flight_csv, tmp_path):
        out = tmp_path / "identity"
        result = runner.invoke(cli.fusion_app, ["--csv", str(flight_csv), "-o", str(out)])

        assert result.exit_code == 0, result.output
        names = sorted(p.name for p in out.iterdir())
        assert names == ["aliases.json", "apply_aliases.sql", "entities.json", "fusion_report.md", "merge_candidates.json"]

        candidates = {c["source_name"]: c for c in json.loads((out / "merge_candidates.json").read_text())}
        assert candidates["JE"]["match_type"] == "Abbreviation"
        assert candidates["MAXWILL"]["match_type"] == "FuzzyMatch"
        assert candidates["MAXWILL"]["auto_merge"] is False
        # not applied without --auto-merge
        assert "JE" not in json.loads((out / "aliases.json").read_text())
        assert "- KELLEN (1 flights)" in (out / "fusion_report.md").read_text()

    def test_auto_merge_applies_high_confidence_only(self, flight_csv, tmp_path):
        out = tmp_path / "identity"
        result = runner.invoke(cli.fusion_app, ["--csv", str(flight_csv), "-o", str(out), "--auto-merge"])

        assert result.exit_code == 0, result.output
        aliases = json.loads((out / "aliases.json").read_text())
        assert aliases["JE"] == "JEFFREY EPSTEIN"
        assert "MAXWILL" not in aliases
        assert "'JE', 'JEFFREY EPSTEIN'" in (out / "apply_aliases.sql").read_text()

    def test_lower_auto_merge_threshold(self, flight_csv, tmp_path):
        out = tmp_path / "identity"
        result = runner.invoke(
            cli.fusion_app,
            ["--csv", str(flight_csv), "-o", str(out), "--auto-merge", "--auto-merge-threshold", "0.9"],
        )

        assert result.exit_code == 0, result.output
        assert json.loads((out / "aliases.json").read_text())["MAXWILL"] == "MAXWELL"

    def test_sql_only(self, flight_csv, tmp_path):
        out = tmp_path / "identity"
        result = runner.invoke(cli.fusion_app, ["--csv", str(flight_csv), "-o", str(out), "--format", "sql"])

        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in out.iterdir()) == ["apply_aliases.sql", "fusion_report.md"]

    def test_use_ai_requires_key(self, flight_csv, tmp_path, monkeypatch):
        monkeypatch.setattr(cli.config, "GEMINI_API_KEY", None)
        result = runner.invoke(cli.fusion_app, ["--csv", str(flight_csv), "-o", str(tmp_path / "i"), "--use-ai"])
        assert result.exit_code == 2
