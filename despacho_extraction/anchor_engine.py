"""
Module 4b: Anchor Extraction Engine.
Runs an ExtractionPlan against one normalized text: anchors are located in order
from a moving cursor, captures take the text between their bounding anchors.
Missing anchors never abort the run; affected captures come back missing.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from rapidfuzz import fuzz

from .config import PipelineConfig
from .field_cleaning import clean_date, clean_money
from .text_utils import collapse_spaced_letters, fold_text, normalize_whitespace
from .types import Anchor, Capture, ExtractionPlan, FieldResult, Paragraph, ValueType

logger = logging.getLogger(__name__)

BOTH_ANCHORS_CONFIDENCE = 0.95
ONE_ANCHOR_CONFIDENCE = 0.6
FUZZY_ANCHOR_PENALTY = 0.1

_TRIM_CHARS = " \t\r\n:;,–-"
_HAS_WORD_RE = re.compile(r"\w")


@dataclass(frozen=True)
class _Loc:
    start: int
    end: int
    fuzzy: bool = False


def normalize_extraction_text(text: str) -> str:
    """Per line: collapse letter-spaced runs and whitespace; drop empty lines."""
    lines = []
    for raw in (text or "").splitlines():
        line = normalize_whitespace(collapse_spaced_letters(raw))
        if line:
            lines.append(line)
    return "\n".join(lines)


def build_window_text(paragraphs: Sequence[Paragraph], head: bool = True, count: int = 12) -> str:
    """Normalized text of the first (head) or last (tail) `count` paragraphs."""
    if count <= 0:
        return ""
    picked = paragraphs[:count] if head else paragraphs[-count:]
    return normalize_extraction_text("\n".join(p.text for p in picked))


def _glued(a: str, b: str) -> bool:
    return (a.isalpha() and b.isalpha()) or (a.isdigit() and b.isdigit())


def _on_word_boundary(anchor: Anchor, needle: str, folded: str, start: int, end: int) -> bool:
    """False when a hit for a whitespace-delimited literal runs into a neighbouring word."""
    if anchor.word_start and start > 0 and _glued(needle[0], folded[start - 1]):
        return False
    if anchor.word_end and end < len(folded) and _glued(needle[-1], folded[end]):
        return False
    return True


def shape_ok(value_type: ValueType, value: str) -> bool:
    """Cheap shape check for a captured value of the declared type."""
    if value_type is ValueType.MONEY:
        return clean_money(value) is not None
    if value_type is ValueType.DATE:
        return clean_date(value) is not None
    if value_type is ValueType.IDENTIFIER:
        return sum(c.isdigit() for c in value) >= 5
    return bool(_HAS_WORD_RE.search(value))


class AnchorEngine:
    """Executes compiled plans; one instance can serve many documents."""

    def __init__(self, config: Optional[PipelineConfig] = None) -> None:
        self.config = config or PipelineConfig()

    def run(self, plan: ExtractionPlan, text: str) -> List[FieldResult]:
        """
        Return one FieldResult per capture occurrence, missing ones included.
        Offsets refer to normalize_extraction_text(text).
        """
        text = normalize_extraction_text(text)
        folded = fold_text(text)
        locations: Dict[int, Optional[_Loc]] = {}
        cursor = 0
        for idx, ins in enumerate(plan.instructions):
            if not isinstance(ins, Anchor):
                continue
            loc = self._locate(ins, folded, cursor)
            locations[idx] = loc
            if loc is None:
                logger.debug("Plan %s: anchor not found after offset %d: %r", plan.name, cursor, ins.text)
            else:
                cursor = loc.end

        results: List[FieldResult] = []
        counts: Dict[str, int] = {}
        for idx, ins in enumerate(plan.instructions):
            if isinstance(ins, Capture):
                for result in self._resolve(plan, idx, ins, text, folded, locations, counts):
                    results.append(result)
        found = sum(1 for r in results if not r.missing)
        logger.debug("Plan %s: %d/%d captures found", plan.name, found, len(results))
        return results

    # ------------------------------------------------------------------

    def _locate(self, anchor: Anchor, folded: str, cursor: int) -> Optional[_Loc]:
        loc = self._find_exact(anchor, folded, cursor, len(folded))
        if loc is not None:
            return loc
        return self._locate_fuzzy(anchor, folded, cursor)

    def _locate_fuzzy(self, anchor: Anchor, folded: str, cursor: int) -> Optional[_Loc]:
        cfg = self.config
        needle = anchor.normalized
        if len(needle) < cfg.anchor_fuzzy_min_length:
            return None
        hay = folded[cursor:cursor + cfg.anchor_fuzzy_window]
        if len(hay) < len(needle):
            return None
        alignment = fuzz.partial_ratio_alignment(needle, hay, score_cutoff=cfg.anchor_fuzzy_min_score)
        if alignment is None:
            return None
        start, end = cursor + alignment.dest_start, cursor + alignment.dest_end
        if not _on_word_boundary(anchor, needle, folded, start, end):
            logger.debug("Fuzzy anchor %r rejected: hit at %d continues a word", anchor.text, start)
            return None
        return _Loc(start, end, fuzzy=True)

    def _find_exact(self, anchor: Anchor, folded: str, start: int, limit: int) -> Optional[_Loc]:
        for needle in (anchor.normalized, anchor.collapsed):
            if not needle:
                continue
            i = folded.find(needle, start, limit)
            while i >= 0:
                if _on_word_boundary(anchor, needle, folded, i, i + len(needle)):
                    return _Loc(i, i + len(needle))
                i = folded.find(needle, i + 1, limit)
        return None

    def _resolve(
        self,
        plan: ExtractionPlan,
        idx: int,
        cap: Capture,
        text: str,
        folded: str,
        locations: Dict[int, Optional[_Loc]],
        counts: Dict[str, int],
    ) -> List[FieldResult]:
        before = locations.get(cap.before) if cap.before is not None else None
        after = locations.get(cap.after) if cap.after is not None else None
        if (cap.before is not None and before is None) or (cap.after is not None and after is None):
            return [self._missing(cap, counts, "anchor_not_found")]

        if before is not None and after is not None:
            start, end = before.end, after.start
        elif after is not None:
            end = after.start
            start = text.rfind("\n", 0, end) + 1
        else:
            start = before.end
            while start < len(text) and text[start].isspace():
                start += 1
            nl = text.find("\n", start)
            end = nl if nl >= 0 else len(text)
        if end < start:
            return [self._missing(cap, counts, "anchor_order")]

        out = [self._capture(cap, text, start, end, before, after, counts)]
        if cap.cardinality.repeatable and before is not None and after is not None:
            out.extend(self._repeat(plan, cap, text, folded, after, locations, counts))
        return out

    def _repeat(
        self,
        plan: ExtractionPlan,
        cap: Capture,
        text: str,
        folded: str,
        after: _Loc,
        locations: Dict[int, Optional[_Loc]],
        counts: Dict[str, int],
    ) -> List[FieldResult]:
        """Further occurrences of the same anchor pair, up to the next located plan anchor."""
        before_anchor = plan.instructions[cap.before]
        after_anchor = plan.instructions[cap.after]
        limit = len(text)
        for j in range(cap.after + 1, len(plan.instructions)):
            loc = locations.get(j)
            if loc is not None:
                limit = loc.start
                break
        out: List[FieldResult] = []
        pos = after.end
        while pos < limit:
            b = self._find_exact(before_anchor, folded, pos, limit)
            if b is None:
                break
            a = self._find_exact(after_anchor, folded, b.end, limit)
            if a is None:
                break
            out.append(self._capture(cap, text, b.end, a.start, b, a, counts))
            pos = a.end
        return out

    def _capture(
        self,
        cap: Capture,
        text: str,
        start: int,
        end: int,
        before: Optional[_Loc],
        after: Optional[_Loc],
        counts: Dict[str, int],
    ) -> FieldResult:
        raw = text[start:end]
        lead = len(raw) - len(raw.lstrip(_TRIM_CHARS))
        value = raw.strip(_TRIM_CHARS)
        if not value:
            return self._missing(cap, counts, "empty_span", start, end)
        s = start + lead
        e = s + len(value)
        notes: List[str] = []
        conf = BOTH_ANCHORS_CONFIDENCE if before is not None and after is not None else ONE_ANCHOR_CONFIDENCE
        if before is None or after is None:
            notes.append("single_anchor")
        for loc, label in ((before, "before"), (after, "after")):
            if loc is not None and loc.fuzzy:
                conf -= FUZZY_ANCHOR_PENALTY
                notes.append(f"fuzzy_anchor_{label}")
        if not shape_ok(cap.value_type, value):
            conf *= 0.5
            notes.append("type_mismatch")
        if len(value) > self.config.max_capture_chars:
            conf *= 0.5
            notes.append("long_span")
        occ = self._next_occurrence(cap, counts)
        return FieldResult(
            field_id=cap.field_id,
            field_key=cap.field_key,
            occurrence_index=occ,
            value_type=cap.value_type,
            value=value,
            missing=False,
            start_offset=s,
            end_offset=e,
            confidence=max(0.01, min(1.0, conf)),
            notes=tuple(notes),
        )

    def _missing(
        self,
        cap: Capture,
        counts: Dict[str, int],
        reason: str,
        start: int = -1,
        end: int = -1,
    ) -> FieldResult:
        return FieldResult(
            field_id=cap.field_id,
            field_key=cap.field_key,
            occurrence_index=self._next_occurrence(cap, counts),
            value_type=cap.value_type,
            value=None,
            missing=True,
            start_offset=start,
            end_offset=end,
            confidence=0.0,
            notes=(reason,),
        )

    @staticmethod
    def _next_occurrence(cap: Capture, counts: Dict[str, int]) -> int:
        occ = counts.get(cap.field_key, 0)
        counts[cap.field_key] = occ + 1
        return occ
