"""Entity resolution for passenger names.

Frequent names become canonical entities; the remaining names are matched
against them by abbreviation, substring and Jaro-Winkler similarity, and
surfaced as merge candidates. Applying a candidate is the only mutation.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rapidfuzz.distance import Jaro

from .errors import ParseError
from .json_extract import parse_json_object
from .logging_utils import log_event
from .models import (
    AliasEvent,
    FusionConfig,
    FusionResult,
    MatchType,
    MergeCandidate,
    PersonEntity,
)
from .prompts import IDENTITY_ANALYSIS_PROMPT

logger = logging.getLogger("flightlog.identity_fusion")

TITLE_TOKENS = ("MR.", "MS.", "MRS.", "DR.", "MR", "MS", "MRS", "DR")

ABBREVIATION_SCORE = 0.95
SUBSTRING_SCORE = 0.90
MIN_PARTIAL_LENGTH = 3
WINKLER_PREFIX_SCALE = 0.1
WINKLER_MAX_PREFIX = 4


def normalize_name(name: str) -> str:
    return " ".join(name.upper().split())


def jaro_winkler_similarity(s1: str, s2: str) -> float:
    """
    Jaro similarity plus a 0.1-per-character bonus for a common prefix of up to 4.

    rapidfuzz halves the transposition count with integer division, so an odd
    count of out-of-order matches costs the same as the even count below it.
    """
    a, b = s1.upper(), s2.upper()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    jaro = Jaro.similarity(a, b)

    prefix = 0
    for x, y in zip(a[:WINKLER_MAX_PREFIX], b[:WINKLER_MAX_PREFIX]):
        if x != y:
            break
        prefix += 1

    return jaro + prefix * WINKLER_PREFIX_SCALE * (1.0 - jaro)


def _strip_titles(words: List[str]) -> List[str]:
    return [w for w in words if w not in TITLE_TOKENS]


def is_abbreviation(short: str, long: str) -> bool:
    """
    "JE" / "JEFFREY" / "EPSTEIN" all abbreviate "JEFFREY EPSTEIN":
    initials of every word, or the first word, or the last word.
    """
    short = short.upper().strip()
    long_words = _strip_titles(long.upper().split())

    short_letters = [c for c in short if c.isalpha()]
    if not short_letters or not long_words:
        return False

    if len(short_letters) == len(long_words):
        if all(word.startswith(c) for c, word in zip(short_letters, long_words)):
            return True

    if len(long_words) > 1 and short in (long_words[0], long_words[-1]):
        return True

    return False


def is_partial_match(shorter: str, longer: str) -> bool:
    shorter = shorter.upper()
    longer = longer.upper()

    if len(shorter) >= len(longer):
        return False
    if len(shorter) < MIN_PARTIAL_LENGTH:
        return False
    return shorter in longer


class IdentityFusion:
    """Stateful engine for one fusion run over a name/frequency snapshot."""

    def __init__(self, config: Optional[FusionConfig] = None) -> None:
        self.config = config or FusionConfig()
        self.entities: Dict[str, PersonEntity] = {}
        self.name_to_entity: Dict[str, str] = {}
        self.alias_log: List[AliasEvent] = []

    # ---------------- alias index ----------------

    def _assign_alias(self, alias: str, entity_id: str) -> None:
        previous = self.name_to_entity.get(alias)
        if previous is not None and previous != entity_id and previous in self.entities:
            old = self.entities[previous]
            if alias in old.aliases:
                old.aliases.remove(alias)
                log_event(logger, "alias_reassigned", alias=alias, from_entity=previous, to_entity=entity_id)

        self.name_to_entity[alias] = entity_id
        self.alias_log.append(AliasEvent(alias=alias, entity_id=entity_id))

    def _new_entity(self, name: str, count: int) -> PersonEntity:
        entity = PersonEntity(
            id=str(uuid.uuid4()),
            canonical_name=name,
            aliases=[name],
            confidence=1.0,
            flight_count=count,
        )
        self.entities[entity.id] = entity
        self._assign_alias(name, entity.id)
        return entity

    # ---------------- matching ----------------

    def _abbreviates_seeded(self, name: str) -> bool:
        return any(is_abbreviation(name, e.canonical_name) for e in self.entities.values())

    def _candidate(self, name: str, entity: PersonEntity, score: float, match_type: MatchType, auto: bool) -> MergeCandidate:
        return MergeCandidate(
            source_name=name,
            target_entity_id=entity.id,
            target_canonical_name=entity.canonical_name,
            similarity_score=min(1.0, max(0.0, score)),
            match_type=match_type,
            auto_merge=auto,
        )

    def _match_entity(self, name: str, entity: PersonEntity) -> Optional[MergeCandidate]:
        if is_abbreviation(name, entity.canonical_name):
            return self._candidate(name, entity, ABBREVIATION_SCORE, MatchType.ABBREVIATION, True)

        if is_partial_match(name, entity.canonical_name):
            return self._candidate(name, entity, SUBSTRING_SCORE, MatchType.SUBSTRING, False)

        similarity = jaro_winkler_similarity(name, entity.canonical_name)
        if similarity >= self.config.fuzzy_threshold:
            return self._candidate(
                name,
                entity,
                similarity,
                MatchType.FUZZY_MATCH,
                similarity >= self.config.auto_merge_threshold,
            )
        return None

    def _best_match(self, name: str) -> Optional[MergeCandidate]:
        best: Optional[MergeCandidate] = None
        for entity in self.entities.values():
            candidate = self._match_entity(name, entity)
            if candidate is None:
                continue
            # strictly greater: ties keep the first entity found
            if best is None or candidate.similarity_score > best.similarity_score:
                best = candidate
        return best

    def analyze(self, name_counts: Sequence[Tuple[str, int]]) -> List[MergeCandidate]:
        candidates: List[MergeCandidate] = []

        ranked = sorted(
            ((normalize_name(n), c) for n, c in name_counts if n and n.strip()),
            key=lambda nc: nc[1],
            reverse=True,
        )

        # Phase 1: frequent names seed canonical entities
        for name, count in ranked:
            if count < self.config.min_entity_frequency or name in self.name_to_entity:
                continue
            if self._abbreviates_seeded(name):
                continue
            self._new_entity(name, count)

        abbreviations = {normalize_name(k): normalize_name(v) for k, v in self.config.known_abbreviations.items()}

        # Phase 2: everything else is matched against the seeded entities
        for name, _count in ranked:
            if name in self.name_to_entity:
                continue

            expanded = abbreviations.get(name)
            if expanded is not None and expanded in self.name_to_entity:
                entity = self.entities[self.name_to_entity[expanded]]
                candidates.append(self._candidate(name, entity, 1.0, MatchType.ABBREVIATION, True))
                continue

            best = self._best_match(name)
            if best is not None:
                candidates.append(best)

        log_event(
            logger,
            "fusion_completed",
            names=len(ranked),
            entities=len(self.entities),
            candidates=len(candidates),
            auto_merge=sum(1 for c in candidates if c.auto_merge),
        )
        return candidates

    def apply_merge(self, candidate: MergeCandidate) -> None:
        entity = self.entities.get(candidate.target_entity_id)
        if entity is None:
            log_event(
                logger,
                "merge_skipped",
                level=logging.WARNING,
                source_name=candidate.source_name,
                target_entity_id=candidate.target_entity_id,
            )
            return

        owner_id = self.name_to_entity.get(candidate.source_name)
        owner = self.entities.get(owner_id) if owner_id else None
        if owner is not None and owner.id != entity.id and owner.canonical_name == candidate.source_name:
            # a canonical name stays with its own entity
            log_event(
                logger,
                "merge_rejected",
                level=logging.WARNING,
                source_name=candidate.source_name,
                target_entity_id=entity.id,
                owner_entity_id=owner.id,
            )
            return

        if candidate.source_name not in entity.aliases:
            entity.aliases.append(candidate.source_name)
        self._assign_alias(candidate.source_name, entity.id)

    def get_entities(self) -> List[PersonEntity]:
        return list(self.entities.values())

    def export_aliases(self) -> Dict[str, str]:
        aliases: Dict[str, str] = {}
        for entity in self.entities.values():
            for alias in entity.aliases:
                aliases[alias] = entity.canonical_name
        return aliases

    def unmapped_names(
        self,
        name_counts: Sequence[Tuple[str, int]],
        candidates: Sequence[MergeCandidate],
    ) -> List[Tuple[str, int]]:
        proposed = {c.source_name for c in candidates}
        canonical = {e.canonical_name for e in self.entities.values()}
        ranked = sorted(((normalize_name(n), c) for n, c in name_counts), key=lambda nc: nc[1], reverse=True)
        return [(n, c) for n, c in ranked if n not in proposed and n not in canonical and n not in self.name_to_entity]

    def result(
        self,
        name_counts: Sequence[Tuple[str, int]],
        candidates: Sequence[MergeCandidate],
    ) -> FusionResult:
        return FusionResult(
            entities=self.get_entities(),
            merge_candidates=list(candidates),
            unmapped_names=self.unmapped_names(name_counts, candidates),
            aliases_map=self.export_aliases(),
        )

    # ---------------- AI-assisted grouping ----------------

    def build_ai_prompt(self, names: Sequence[Tuple[str, int]]) -> str:
        known = "\n".join(f"- {e.canonical_name}" for e in self.entities.values())
        listed = "\n".join(f"- {n} ({c} flights)" for n, c in names)
        return f"{IDENTITY_ANALYSIS_PROMPT}\nKNOWN ENTITIES:\n{known}\n\nNames to analyze:\n{listed}\n"

    def candidates_from_ai_groups(self, payload: Dict[str, Any]) -> List[MergeCandidate]:
        by_name = {e.canonical_name: e for e in self.entities.values()}
        out: List[MergeCandidate] = []

        for group in payload.get("groups") or []:
            if not isinstance(group, dict):
                continue
            entity = by_name.get(normalize_name(str(group.get("canonical_name") or "")))
            if entity is None:
                continue
            try:
                confidence = float(group.get("confidence", 0.5))
            except (TypeError, ValueError):
                confidence = 0.5

            for alias in group.get("aliases") or []:
                alias = normalize_name(str(alias))
                if not alias or alias == entity.canonical_name or alias in self.name_to_entity:
                    continue
                out.append(self._candidate(alias, entity, confidence, MatchType.AI_INFERRED, False))
        return out

    async def infer_with_ai(self, model: Any, names: Sequence[Tuple[str, int]]) -> List[MergeCandidate]:
        """
        Ask the vision/LLM service to group ``names`` with known entities.

        AI candidates are never auto-merged. Any failure returns no candidates.
        """
        if not names or not self.entities:
            return []

        try:
            response = await model.generate_content_async(self.build_ai_prompt(names))
            payload = parse_json_object(response.text)
        except ParseError as e:
            log_event(logger, "ai_grouping_unparsable", level=logging.WARNING, error=str(e))
            return []
        except Exception as e:
            log_event(logger, "ai_grouping_failed", level=logging.WARNING, error=str(e))
            return []

        allowed = {normalize_name(n) for n, _ in names}
        candidates = [c for c in self.candidates_from_ai_groups(payload) if c.source_name in allowed]
        log_event(logger, "ai_grouping_completed", names=len(names), candidates=len(candidates))
        return candidates
