from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ---------------- extraction ----------------


class FlightLogEntry(BaseModel):
    """One row of a handwritten flight log, CSV-ready."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date: Optional[str] = None
    from_: Optional[str] = Field(
        default=None,
        serialization_alias="from",
        validation_alias=AliasChoices("from", "from_", "departure", "origin", "departure_airport"),
    )
    to: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("to", "arrival", "destination", "arrival_airport"),
    )
    aircraft_registration: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("aircraft_registration", "tail_number", "registration"),
    )
    passengers: Optional[str] = None
    flight_number: Optional[str] = None
    source_page: Optional[int] = None

    @field_validator(
        "date", "from_", "to", "aircraft_registration", "passengers", "flight_number",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, list):
            return "; ".join(str(x) for x in v if x is not None)
        return str(v)


class PageExtractionResult(BaseModel):
    page_number: int
    image_path: str
    entries: List[FlightLogEntry] = Field(default_factory=list)
    raw_response: Optional[str] = None
    error: Optional[str] = None


class ProcessingError(BaseModel):
    page_number: int
    error: str


class MasterFlightLog(BaseModel):
    total_entries: int = 0
    pages_processed: int = 0
    pages_with_errors: int = 0
    unique_aircraft: List[str] = Field(default_factory=list)
    unique_airports: List[str] = Field(default_factory=list)
    date_range: Optional[Tuple[str, str]] = None
    entries: List[FlightLogEntry] = Field(default_factory=list)
    processing_errors: List[ProcessingError] = Field(default_factory=list)


# ---------------- splitting ----------------


class ImageFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    TIFF = "tiff"

    @property
    def extension(self) -> str:
        return {"png": "png", "jpeg": "jpg", "tiff": "tiff"}[self.value]


class SplitConfig(BaseModel):
    dpi: int = Field(default=200, gt=0)
    format: ImageFormat = ImageFormat.PNG
    # 1-indexed, inclusive
    page_range: Optional[Tuple[int, int]] = None

    @field_validator("page_range")
    @classmethod
    def _validate_range(cls, v: Optional[Tuple[int, int]]) -> Optional[Tuple[int, int]]:
        if v is None:
            return v
        start, end = v
        if start < 1 or end < start:
            raise ValueError(f"invalid page range {start}-{end}")
        return v


class SplitResult(BaseModel):
    page_count: int
    output_dir: Path
    page_paths: List[Path] = Field(default_factory=list)


# ---------------- identity fusion ----------------


class MatchType(str, Enum):
    EXACT_MATCH = "ExactMatch"
    ABBREVIATION = "Abbreviation"  # JE -> JEFFREY EPSTEIN
    SUBSTRING = "Substring"  # JEFFREY -> JEFFREY EPSTEIN
    FUZZY_MATCH = "FuzzyMatch"  # typo / OCR error
    AI_INFERRED = "AIInferred"


class PersonEntity(BaseModel):
    id: str
    canonical_name: str
    aliases: List[str] = Field(default_factory=list)
    confidence: float = Field(default=1.0, ge=0, le=1)
    flight_count: int = 0
    notes: Optional[str] = None


class MergeCandidate(BaseModel):
    source_name: str
    target_entity_id: str
    target_canonical_name: str
    similarity_score: float = Field(..., ge=0, le=1)
    match_type: MatchType
    auto_merge: bool = False


class FusionConfig(BaseModel):
    fuzzy_threshold: float = Field(default=0.85, ge=0, le=1)
    auto_merge_threshold: float = Field(default=0.95, ge=0, le=1)
    # No built-in abbreviations; users supply their own mappings
    known_abbreviations: Dict[str, str] = Field(default_factory=dict)
    min_entity_frequency: int = Field(default=5, ge=1)


class AliasEvent(BaseModel):
    alias: str
    entity_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FusionResult(BaseModel):
    entities: List[PersonEntity] = Field(default_factory=list)
    merge_candidates: List[MergeCandidate] = Field(default_factory=list)
    unmapped_names: List[Tuple[str, int]] = Field(default_factory=list)
    aliases_map: Dict[str, str] = Field(default_factory=dict)
