"""
Module 2: Paragraph Builder & Bands.
- Clusters the lines of a page into paragraphs by vertical gap.
- Classifies lines/paragraphs into page bands from normalized Y.
- Band summaries (median / quartile boxes, dominant font, samples).
- Header / footer text and the ink density estimate used for classification.
"""

import logging
import re
from collections import Counter
from statistics import median
from typing import Dict, Iterable, List, Sequence

from .config import BandScheme, PipelineConfig
from .types import BAND_ORDER, Band, BandSummary, BBox, Line, Paragraph

logger = logging.getLogger(__name__)

# Portuguese function words and symbols that carry no boilerplate signal.
STOP_WORDS = frozenset({
    "", "-", "/", "pg", "se", "em", "de", "da", "do", "das", "dos", "a", "o", "e",
    "que", "para", "com", "no", "na", "as", "os", "ao", "à", "até", "por", "uma",
    "um", "§", "art", "artigo",
})

_TOKEN_STRIP_RE = re.compile(r"[^\w]+")


def paragraph_tokens(text: str) -> List[str]:
    """Lowercase word tokens with punctuation and stop-words removed."""
    out: List[str] = []
    for raw in text.split(" "):
        tok = _TOKEN_STRIP_RE.sub("", raw).lower()
        if not tok or tok in STOP_WORDS:
            continue
        out.append(tok)
    return out


def _union_bbox(lines: Sequence[Line]) -> BBox:
    return (
        min(l.bbox[0] for l in lines),
        min(l.bbox[1] for l in lines),
        max(l.bbox[2] for l in lines),
        max(l.bbox[3] for l in lines),
    )


class ParagraphBuilder:
    """Groups the lines of one page into paragraphs."""

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config

    def build(self, lines: Sequence[Line]) -> List[Paragraph]:
        if not lines:
            return []
        ordered = sorted(lines, key=lambda l: (-l.ny1, -l.ny0, l.bbox[0]))
        groups: List[List[Line]] = []
        current: List[Line] = [ordered[0]]
        bottom = ordered[0].ny0
        for line in ordered[1:]:
            gap = bottom - line.ny1
            if gap > self.config.paragraph_gap_y:
                groups.append(current)
                current = [line]
                bottom = line.ny0
            else:
                current.append(line)
                bottom = min(bottom, line.ny0)
        groups.append(current)

        page = ordered[0].page
        paragraphs: List[Paragraph] = []
        for idx, group in enumerate(groups):
            text = " ".join(l.text for l in group).strip()
            paragraphs.append(
                Paragraph(
                    page=page,
                    index=idx,
                    lines=group,
                    text=text,
                    bbox=_union_bbox(group),
                    tokens=paragraph_tokens(text),
                )
            )
        logger.debug("Page %d: %d lines grouped into %d paragraphs", page, len(ordered), len(paragraphs))
        return paragraphs


def build_paragraphs(lines_by_page: Dict[int, List[Line]], config: PipelineConfig) -> List[Paragraph]:
    """Paragraphs for several pages, page order then top to bottom."""
    builder = ParagraphBuilder(config)
    out: List[Paragraph] = []
    for page in sorted(lines_by_page):
        out.extend(builder.build(lines_by_page[page]))
    return out


# ---------------------------------------------------------------------------
# Bands
# ---------------------------------------------------------------------------


def classify_band(y: float, scheme: BandScheme) -> Band:
    return scheme.classify(y)


def group_by_band(items: Iterable, scheme: BandScheme) -> Dict[Band, list]:
    """Bucket lines or paragraphs by the band of their ny0, preserving input order."""
    out: Dict[Band, list] = {}
    for item in items:
        out.setdefault(scheme.classify(item.ny0), []).append(item)
    return out


def _quantile(values: Sequence[float], q: float) -> float:
    """Linear-interpolated quantile of a non-empty sequence."""
    s = sorted(values)
    if len(s) == 1:
        return s[0]
    pos = q * (len(s) - 1)
    lo = int(pos)
    hi = min(lo + 1, len(s) - 1)
    frac = pos - lo
    return s[lo] + (s[hi] - s[lo]) * frac


def _bbox_stat(lines: Sequence[Line], q: float) -> BBox:
    return tuple(_quantile([l.bbox[i] for l in lines], q) for i in range(4))  # type: ignore[return-value]


def summarize_bands(
    lines: Sequence[Line],
    scheme: BandScheme,
    sample_count: int = 5,
) -> List[BandSummary]:
    """One summary per non-empty band, in band order."""
    grouped = group_by_band(lines, scheme)
    summaries: List[BandSummary] = []
    for band in BAND_ORDER:
        members = grouped.get(band)
        if not members:
            continue
        fonts = Counter(l.font for l in members if l.font)
        sizes = [l.font_size for l in members if l.font_size > 0]
        summaries.append(
            BandSummary(
                band=band,
                count=len(members),
                bbox=_bbox_stat(members, 0.5),
                bbox_p25=_bbox_stat(members, 0.25),
                bbox_p75=_bbox_stat(members, 0.75),
                font=fonts.most_common(1)[0][0] if fonts else "",
                font_size=median(sizes) if sizes else 0.0,
                samples=[l.text for l in members[:sample_count]],
            )
        )
    return summaries


def band_text(paragraphs: Sequence[Paragraph], scheme: BandScheme, band: Band) -> str:
    return "\n".join(p.text for p in paragraphs if p.bbox and scheme.classify(p.ny0) == band)


# ---------------------------------------------------------------------------
# Header / footer text
# ---------------------------------------------------------------------------


def _first_lines(text: str, n: int, from_end: bool = False) -> str:
    lines = [l.strip() for l in (text or "").splitlines() if l.strip()]
    picked = lines[-n:] if from_end else lines[:n]
    return "\n".join(picked)


def header_text(
    paragraphs: Sequence[Paragraph],
    top_pct: float = 0.15,
    max_paragraphs: int = 2,
    fallback_text: str = "",
    fallback_lines: int = 3,
) -> str:
    """Topmost paragraphs whose top edge lies in the top band of the page."""
    located = [p for p in paragraphs if p.bbox is not None]
    if not located:
        return _first_lines(fallback_text, fallback_lines)
    inside = [p for p in located if p.ny1 >= 1.0 - top_pct]
    inside.sort(key=lambda p: (p.page, -p.ny1))
    return "\n".join(p.text for p in inside[:max_paragraphs])


def footer_text(
    paragraphs: Sequence[Paragraph],
    bottom_pct: float = 0.15,
    max_paragraphs: int = 2,
    fallback_text: str = "",
    fallback_lines: int = 3,
) -> str:
    """Bottommost paragraphs whose bottom edge lies in the bottom band, read top-down."""
    located = [p for p in paragraphs if p.bbox is not None]
    if not located:
        return _first_lines(fallback_text, fallback_lines, from_end=True)
    inside = [p for p in located if p.ny0 <= bottom_pct]
    inside.sort(key=lambda p: (-p.page, p.ny0))
    picked = inside[:max_paragraphs]
    picked.reverse()
    return "\n".join(p.text for p in picked)


# ---------------------------------------------------------------------------
# Density
# ---------------------------------------------------------------------------


def _solid_chars(text: str) -> int:
    return sum(1 for c in text if c.isalnum())


def estimate_density(lines: Sequence[Line]) -> float:
    """
    Ink density in [0, 100]: solid characters over line-slot capacity.
    Capacity = (lines + inferred blank lines) * max chars that fit in the widest line.
    """
    lines = [l for l in lines if l.text]
    if not lines:
        return 0.0
    total_width = sum(l.x1 - l.x0 for l in lines)
    total_chars = sum(len(l.text) for l in lines)
    if total_width <= 0 or total_chars == 0:
        return 0.0
    avg_char_width = total_width / total_chars
    widest = max(l.x1 - l.x0 for l in lines)
    max_chars = max(1.0, widest / avg_char_width)

    heights = [l.height for l in lines if l.height > 0]
    line_height = median(heights) if heights else 0.0
    blanks = 0
    ordered = sorted(lines, key=lambda l: (l.page, -l.y1))
    if line_height > 0:
        for prev, cur in zip(ordered, ordered[1:]):
            if prev.page != cur.page:
                continue
            gap = prev.y0 - cur.y1
            if gap > line_height:
                blanks += int(gap // line_height)

    filled = sum(_solid_chars(l.text) for l in lines)
    capacity = (len(lines) + blanks) * max_chars
    density = 100.0 * filled / capacity
    return max(0.0, min(100.0, density))


def blank_percentage(lines: Sequence[Line]) -> float:
    return 100.0 - estimate_density(lines) if lines else 100.0


def page_text(lines: Sequence[Line]) -> str:
    return "\n".join(l.text for l in lines)


def paragraphs_for_pages(paragraphs: Sequence[Paragraph], start: int, end: int) -> List[Paragraph]:
    return [p for p in paragraphs if start <= p.page <= end]


def first_page_paragraphs(paragraphs: Sequence[Paragraph]) -> List[Paragraph]:
    if not paragraphs:
        return []
    first = min(p.page for p in paragraphs)
    return [p for p in paragraphs if p.page == first]


def last_page_paragraphs(paragraphs: Sequence[Paragraph]) -> List[Paragraph]:
    if not paragraphs:
        return []
    last = max(p.page for p in paragraphs)
    return [p for p in paragraphs if p.page == last]
