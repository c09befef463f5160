"""
Module 1: Line Builder.
Clusters the tokens of one page into text lines by y0 proximity, orders each line
left to right, and decides where inter-word spaces go from the gap distribution
(knee detection with a character-width fallback for letter-spaced text).
"""

import logging
from collections import Counter, defaultdict
from statistics import median
from typing import Dict, List, Optional, Sequence, Tuple

from .config import PipelineConfig
from .text_utils import collapse_doubled_chars, fix_missing_spaces
from .types import Line, Token

logger = logging.getLogger(__name__)


def cluster_rows(tokens: Sequence[Token], tolerance: float) -> List[List[Token]]:
    """
    Group tokens into rows, top row first.
    A token joins the current row while its y0 is within `tolerance` of the row's mean y0.
    """
    if not tokens:
        return []
    ordered = sorted(tokens, key=lambda t: (-t.y0, t.x0))
    rows: List[List[Token]] = []
    current: List[Token] = [ordered[0]]
    y_sum = ordered[0].y0
    for tok in ordered[1:]:
        if abs(tok.y0 - y_sum / len(current)) <= tolerance:
            current.append(tok)
            y_sum += tok.y0
        else:
            rows.append(current)
            current = [tok]
            y_sum = tok.y0
    rows.append(current)
    for row in rows:
        row.sort(key=lambda t: (t.x0, t.x1))
    return rows


def _position_key(t: Token) -> Tuple:
    if t.nx1 > t.nx0 or t.ny1 > t.ny0:
        return (round(t.nx0, 3), round(t.ny0, 3), round(t.nx1, 3), round(t.ny1, 3))
    return (round(t.x0, 1), round(t.y0, 1), round(t.x1, 1), round(t.y1, 1))


def dedupe_tokens(tokens: Sequence[Token]) -> List[Token]:
    """
    Drop tokens repeated with the same text at the same rounded box, keeping the first.
    Some producers draw text twice to simulate bold.
    """
    seen = set()
    out: List[Token] = []
    for t in tokens:
        key = (t.page, t.text, _position_key(t))
        if key in seen:
            continue
        seen.add(key)
        out.append(t)
    return out


def horizontal_gaps(row: Sequence[Token]) -> List[float]:
    """Gaps between consecutive tokens of an x-sorted row; overlaps count as 0."""
    return [max(0.0, b.x0 - a.x1) for a, b in zip(row, row[1:])]


class LineBuilder:
    """Builds Line objects from the tokens of one page."""

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config

    def build(self, tokens: Sequence[Token]) -> List[Line]:
        """Return lines top to bottom; tokens with no visible text still belong to their row."""
        unique = dedupe_tokens(tokens)
        if len(unique) < len(tokens):
            logger.debug("Dropped %d duplicated tokens", len(tokens) - len(unique))
        rows = cluster_rows(unique, self.config.line_merge_tolerance)
        lines: List[Line] = []
        for row in rows:
            line = self._build_line(row)
            if line is not None:
                lines.append(line)
        return lines

    def space_threshold(self, row: Sequence[Token]) -> Tuple[float, str]:
        """
        Gap above which a space is inserted, and which rule produced it.
        Knee: largest ratio between consecutive sorted gaps; used when >= knee_min_ratio.
        """
        cfg = self.config
        char_widths = [t.char_width for t in row if t.text.strip()]
        avg_char_width = median(char_widths) if char_widths else 0.0
        gaps = sorted(horizontal_gaps(row))
        best_ratio = 0.0
        best_idx = -1
        for i in range(len(gaps) - 1):
            ratio = gaps[i + 1] / max(gaps[i], cfg.knee_min_gap)
            if ratio > best_ratio:
                best_ratio = ratio
                best_idx = i
        if best_idx >= 0 and best_ratio >= cfg.knee_min_ratio:
            return (gaps[best_idx] + gaps[best_idx + 1]) / 2.0, "knee"
        visible = [t for t in row if t.text.strip()]
        single = sum(1 for t in visible if len(t.text.strip()) == 1)
        if visible and single / len(visible) > cfg.single_char_majority:
            return avg_char_width * cfg.spaced_char_width_gap_factor, "spaced_chars"
        return avg_char_width * cfg.char_width_gap_factor, "char_width"

    def _build_line(self, row: List[Token]) -> Optional[Line]:
        threshold, reason = self.space_threshold(row)
        parts: List[str] = []
        prev = None
        for tok in row:
            if prev is not None and tok.x0 - prev.x1 > threshold:
                parts.append(" ")
            parts.append(collapse_doubled_chars(tok.text) if tok.text.strip() else tok.text)
            prev = tok
        text = fix_missing_spaces("".join(parts))
        if not text:
            return None
        fonts = Counter(t.font.lower() for t in row if t.font)
        sizes = [t.size for t in row if t.size > 0]
        logger.debug("Line page=%d threshold=%.3f (%s): %s", row[0].page, threshold, reason, text[:60])
        return Line(
            page=row[0].page,
            tokens=list(row),
            text=text,
            x0=min(t.x0 for t in row),
            y0=min(t.y0 for t in row),
            x1=max(t.x1 for t in row),
            y1=max(t.y1 for t in row),
            bbox=(
                min(t.nx0 for t in row),
                min(t.ny0 for t in row),
                max(t.nx1 for t in row),
                max(t.ny1 for t in row),
            ),
            font=fonts.most_common(1)[0][0] if fonts else "",
            font_size=sum(sizes) / len(sizes) if sizes else 0.0,
        )


def build_lines(tokens: Sequence[Token], config: PipelineConfig) -> Dict[int, List[Line]]:
    """Build lines for a multi-page token stream; returns {page: lines}."""
    by_page: Dict[int, List[Token]] = defaultdict(list)
    for t in tokens:
        by_page[t.page].append(t)
    builder = LineBuilder(config)
    return {page: builder.build(by_page[page]) for page in sorted(by_page)}
