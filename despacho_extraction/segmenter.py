"""
Module 3: Document Segmenter.
Splits a source page range into logical documents from its outline (bookmarks).
Without bookmarks, boundaries come from an injected automatic segmenter.
"""

import logging
import re
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .config import PipelineConfig
from .types import Bookmark, BoundaryType, DocumentBoundary

logger = logging.getLogger(__name__)

# Any callable (total_pages) -> boundaries; content-based segmentation lives elsewhere.
AutomaticSegmenter = Callable[[int], Sequence[DocumentBoundary]]

_ANEXO_RE = re.compile(r"^anexos?$", re.IGNORECASE)
_TRAILING_ID_RE = re.compile(r"\([\dA-Za-z]{4,}\)$")
_LEADING_NUM_RE = re.compile(r"^\d+\s*-\s*")
_TRAILING_SEI_RE = re.compile(r"\s*-\s*SEI.*$", re.IGNORECASE)
_TRAILING_NUM_RE = re.compile(r"\s*[-–]?\s*(?:n[º°o]?|no)?\s*\d{1,8}(?:[./-]\d+)?\s*$", re.IGNORECASE)
_WS_RE = re.compile(r"\s+")


def sanitize_title(raw: str) -> str:
    """
    Clean an outline title.
    Order matters: separators, trailing id, leading "N - ", trailing "- SEI ...",
    then a trailing numeric suffix when at least 3 characters remain.
    """
    t = _WS_RE.sub(" ", (raw or "").replace("_", " ")).strip()
    t = _TRAILING_ID_RE.sub("", t).strip()
    t = _LEADING_NUM_RE.sub("", t).strip()
    t = _TRAILING_SEI_RE.sub("", t).strip()
    without_tail = _TRAILING_NUM_RE.sub("", t).strip()
    if len(without_tail) >= 3:
        t = without_tail
    return t


def is_anexo_title(title: str) -> bool:
    return bool(_ANEXO_RE.match(title.strip()))


def flatten_bookmarks(roots: Iterable[Bookmark]) -> List[Bookmark]:
    """
    Depth-first flatten in document order using an explicit stack.
    Levels are recomputed from nesting depth when children are present.
    """
    out: List[Bookmark] = []
    stack: List[Tuple[Bookmark, int]] = [(b, b.level) for b in reversed(list(roots))]
    while stack:
        node, level = stack.pop()
        out.append(Bookmark(title=node.title, page=node.page, level=level))
        for child in reversed(node.children):
            stack.append((child, max(child.level, level + 1)))
    return out


class DocumentSegmenter:
    """Bookmark-first segmentation with an automatic fallback."""

    def __init__(self, config: PipelineConfig, automatic: Optional[AutomaticSegmenter] = None) -> None:
        self.config = config
        self.automatic = automatic

    def segment(self, bookmarks: Sequence[Bookmark], total_pages: int) -> List[DocumentBoundary]:
        """Contiguous, non-overlapping boundaries sorted by start page."""
        if total_pages <= 0:
            return []
        entries = [b for b in flatten_bookmarks(bookmarks) if 1 <= b.page <= total_pages]
        if not entries:
            return self._automatic(total_pages)

        entries.sort(key=lambda b: (b.page, b.level))
        # One boundary per start page; the shallowest entry names it.
        starts: List[Bookmark] = []
        for b in entries:
            if starts and starts[-1].page == b.page:
                continue
            starts.append(b)

        boundaries: List[DocumentBoundary] = []
        for i, b in enumerate(starts):
            end = starts[i + 1].page - 1 if i + 1 < len(starts) else total_pages
            title = sanitize_title(b.title)
            btype = BoundaryType.ANEXO if is_anexo_title(title) else BoundaryType.BOOKMARK
            boundaries.append(
                DocumentBoundary(
                    start_page=b.page,
                    end_page=end,
                    raw_title=b.title,
                    sanitized_title=title,
                    detected_type=btype,
                    level=b.level,
                )
            )
        logger.info("Segmented %d pages into %d documents from bookmarks", total_pages, len(boundaries))
        return boundaries

    def split_attachments(
        self,
        parent: DocumentBoundary,
        bookmarks: Sequence[Bookmark],
    ) -> List[DocumentBoundary]:
        """
        Secondary pass over an anexo boundary: child boundaries from the outline
        entries nested under it (or, failing that, other anexo entries in range).
        """
        flat = flatten_bookmarks(bookmarks)
        children = self._nested_entries(parent, flat)
        if not children:
            children = [
                b for b in flat
                if parent.start_page < b.page <= parent.end_page and is_anexo_title(sanitize_title(b.title))
            ]
        children.sort(key=lambda b: (b.page, b.level))
        starts: List[Bookmark] = []
        for b in children:
            if starts and starts[-1].page == b.page:
                continue
            starts.append(b)

        out: List[DocumentBoundary] = []
        for i, b in enumerate(starts):
            end = starts[i + 1].page - 1 if i + 1 < len(starts) else parent.end_page
            out.append(
                DocumentBoundary(
                    start_page=b.page,
                    end_page=max(b.page, end),
                    raw_title=b.title,
                    sanitized_title=sanitize_title(b.title),
                    detected_type=BoundaryType.ANEXO,
                    level=b.level,
                    parent=parent,
                )
            )
        logger.debug("Split anexo %r (%d-%d) into %d children",
                     parent.sanitized_title, parent.start_page, parent.end_page, len(out))
        return out

    def _nested_entries(self, parent: DocumentBoundary, flat: List[Bookmark]) -> List[Bookmark]:
        """Entries after the parent's own outline entry with a deeper level, inside its range."""
        out: List[Bookmark] = []
        inside = False
        for b in flat:
            if not inside:
                if b.page == parent.start_page and b.title == parent.raw_title:
                    inside = True
                continue
            if b.level <= parent.level:
                break
            if parent.start_page <= b.page <= parent.end_page:
                out.append(b)
        return out

    def _automatic(self, total_pages: int) -> List[DocumentBoundary]:
        if self.automatic is None:
            logger.warning("No bookmarks and no automatic segmenter; using whole source as one document")
            return [
                DocumentBoundary(
                    start_page=1,
                    end_page=total_pages,
                    detected_type=BoundaryType.AUTOMATIC,
                )
            ]
        out: List[DocumentBoundary] = []
        for b in self.automatic(total_pages):
            start = max(1, min(b.start_page, total_pages))
            end = max(start, min(b.end_page, total_pages))
            out.append(
                DocumentBoundary(
                    start_page=start,
                    end_page=end,
                    raw_title=b.raw_title,
                    sanitized_title=b.sanitized_title or sanitize_title(b.raw_title),
                    detected_type=BoundaryType.AUTOMATIC,
                    level=b.level,
                )
            )
        out.sort(key=lambda b: b.start_page)
        logger.info("Automatic segmenter produced %d documents for %d pages", len(out), total_pages)
        return out
