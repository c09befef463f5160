"""
PDF Layout Reader.
Uses PyMuPDF to turn each text span into a Token (absolute and page-normalized
coordinates, font, size, style flags) and the outline into Bookmark entries.
Coordinates are flipped to PDF user space so Y grows upward. Fully offline.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple, Union

try:
    import fitz  # PyMuPDF
except ImportError:
    fitz = None  # type: ignore

from .types import Bookmark, Token

logger = logging.getLogger(__name__)

# PyMuPDF span flag bits
FLAG_ITALIC = 2
FLAG_BOLD = 16


class PDFLayoutReader:
    """Extracts positioned text spans and the outline from PDFs."""

    def __init__(self) -> None:
        if fitz is None:
            raise ImportError("PyMuPDF (fitz) is required. Install with: pip install PyMuPDF")

    def read(self, pdf_path: Union[str, Path]) -> "LayoutDocument":
        """Load PDF and extract tokens for every page plus the bookmark list."""
        doc = fitz.open(pdf_path)
        try:
            tokens: List[Token] = []
            page_sizes: List[Tuple[float, float]] = []
            for page_no in range(len(doc)):
                page = doc[page_no]
                rect = page.rect
                page_sizes.append((rect.width, rect.height))
                tokens.extend(self._extract_tokens(page, page_no + 1))
            bookmarks = self._extract_bookmarks(doc.get_toc(simple=True))
            logger.debug("%s: %d pages, %d tokens, %d bookmarks",
                         Path(pdf_path).name, len(doc), len(tokens), len(bookmarks))
            return LayoutDocument(
                tokens=tokens,
                bookmarks=bookmarks,
                page_sizes=page_sizes,
                num_pages=len(doc),
            )
        finally:
            doc.close()

    def _extract_tokens(self, page: "fitz.Page", page_no: int) -> List[Token]:
        """One token per non-empty span of get_text("dict")."""
        width = page.rect.width or 1.0
        height = page.rect.height or 1.0
        tokens: List[Token] = []
        for block in page.get_text("dict").get("blocks", []):
            if block.get("type", 0) != 0:  # image block
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    text = (span.get("text") or "").strip()
                    if not text:
                        continue
                    sx0, sy0, sx1, sy1 = span.get("bbox", (0.0, 0.0, 0.0, 0.0))
                    y0 = height - sy1
                    y1 = height - sy0
                    flags = int(span.get("flags", 0))
                    tokens.append(
                        Token(
                            text=text,
                            x0=sx0,
                            y0=y0,
                            x1=sx1,
                            y1=y1,
                            nx0=sx0 / width,
                            ny0=y0 / height,
                            nx1=sx1 / width,
                            ny1=y1 / height,
                            page=page_no,
                            font=span.get("font", ""),
                            size=float(span.get("size", 0.0)),
                            bold=bool(flags & FLAG_BOLD),
                            italic=bool(flags & FLAG_ITALIC),
                        )
                    )
        return tokens

    @staticmethod
    def _extract_bookmarks(toc: List[list]) -> List[Bookmark]:
        """get_toc(simple=True) rows are [level, title, page]; level 1 is the top."""
        out: List[Bookmark] = []
        for row in toc:
            if len(row) < 3:
                continue
            level, title, page = row[0], row[1], row[2]
            if page < 1:  # outline entry without a target page
                continue
            out.append(Bookmark(title=str(title), page=int(page), level=max(0, int(level) - 1)))
        return out


@dataclass
class LayoutDocument:
    """Tokens and outline of one PDF, pages numbered from 1."""

    tokens: List[Token]
    bookmarks: List[Bookmark]
    page_sizes: List[Tuple[float, float]]
    num_pages: int

    def tokens_for_page(self, page_no: int) -> List[Token]:
        return [t for t in self.tokens if t.page == page_no]

    def tokens_by_page(self) -> Dict[int, List[Token]]:
        out: Dict[int, List[Token]] = {}
        for t in self.tokens:
            out.setdefault(t.page, []).append(t)
        return out
