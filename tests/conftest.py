from __future__ import annotations

import logging
from typing import Callable, List, Optional

import pytest

from despacho_extraction.config import PipelineConfig
from despacho_extraction.types import Line, Paragraph, Token

PAGE_W = 600.0
PAGE_H = 800.0


def _token(
    text: str,
    x0: float,
    y0: float,
    x1: float,
    y1: float,
    page: int = 1,
    page_w: float = PAGE_W,
    page_h: float = PAGE_H,
    size: float = 10.0,
    font: str = "Arial",
) -> Token:
    return Token(
        text=text,
        x0=x0,
        y0=y0,
        x1=x1,
        y1=y1,
        nx0=x0 / page_w,
        ny0=y0 / page_h,
        nx1=x1 / page_w,
        ny1=y1 / page_h,
        page=page,
        font=font,
        size=size,
    )


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


@pytest.fixture
def make_token() -> Callable[..., Token]:
    return _token


@pytest.fixture
def text_line() -> Callable[..., Token]:
    """One token holding a whole line of text, 5 units per character."""

    def build(text: str, y: float, page: int = 1, x: float = 50.0, char_w: float = 5.0) -> Token:
        return _token(text, x, y, x + char_w * len(text), y + 10.0, page=page)

    return build


@pytest.fixture
def make_line() -> Callable[..., Line]:
    def build(
        text: str,
        y: float,
        page: int = 1,
        x0: float = 50.0,
        x1: Optional[float] = None,
        height: float = 10.0,
    ) -> Line:
        x1 = x1 if x1 is not None else x0 + 5.0 * len(text)
        tok = _token(text, x0, y, x1, y + height, page=page)
        return Line(
            page=page,
            tokens=[tok],
            text=text,
            x0=x0,
            y0=y,
            x1=x1,
            y1=y + height,
            bbox=(tok.nx0, tok.ny0, tok.nx1, tok.ny1),
            font="arial",
            font_size=10.0,
        )

    return build


@pytest.fixture
def make_paragraph() -> Callable[..., Paragraph]:
    def build(text: str, page: int = 1, ny0: float = 0.5, ny1: float = 0.55, tokens: Optional[List[str]] = None) -> Paragraph:
        return Paragraph(
            page=page,
            index=0,
            lines=[],
            text=text,
            bbox=(0.1, ny0, 0.9, ny1),
            tokens=tokens if tokens is not None else text.lower().split(),
        )

    return build


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
