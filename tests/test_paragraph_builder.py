from __future__ import annotations

import pytest

from despacho_extraction.config import DEFAULT_BANDS, FIELD_BANDS, PipelineConfig
from despacho_extraction.paragraph_builder import (
    ParagraphBuilder,
    band_text,
    blank_percentage,
    build_paragraphs,
    classify_band,
    estimate_density,
    first_page_paragraphs,
    footer_text,
    header_text,
    last_page_paragraphs,
    paragraph_tokens,
    summarize_bands,
)
from despacho_extraction.types import Band, Paragraph


def test_paragraphs_split_on_vertical_gap(make_line, config: PipelineConfig) -> None:
    lines = [
        make_line("Processo nº 0012345-67.2024.8.15", 600),
        make_line("Perito: Ana Souza", 586),
        make_line("Encaminhe-se à GEORC.", 500),
    ]
    paragraphs = ParagraphBuilder(config).build(lines)
    assert [p.text for p in paragraphs] == [
        "Processo nº 0012345-67.2024.8.15 Perito: Ana Souza",
        "Encaminhe-se à GEORC.",
    ]
    assert [p.index for p in paragraphs] == [0, 1]
    first = paragraphs[0]
    assert first.bbox == (50 / 600, 586 / 800, first.bbox[2], 610 / 800)


def test_build_paragraphs_keeps_page_order(make_line, config: PipelineConfig) -> None:
    by_page = {2: [make_line("segunda página", 700, page=2)], 1: [make_line("primeira página", 700)]}
    assert [p.page for p in build_paragraphs(by_page, config)] == [1, 2]
    assert ParagraphBuilder(config).build([]) == []


def test_paragraph_tokens_drop_stop_words_and_punctuation() -> None:
    assert paragraph_tokens("Processo de pagamento, do Perito.") == ["processo", "pagamento", "perito"]


@pytest.mark.parametrize(
    ("y", "expected"),
    [
        (0.95, Band.HEADER),
        (0.85, Band.HEADER),
        (0.80, Band.SUBHEADER),
        (0.60, Band.BODY1),
        (0.40, Band.BODY2),
        (0.10, Band.FOOTER),
    ],
)
def test_default_band_classification(y: float, expected: Band) -> None:
    assert classify_band(y, DEFAULT_BANDS) is expected


def test_band_rank_never_decreases_going_down_the_page() -> None:
    for scheme in (DEFAULT_BANDS, FIELD_BANDS):
        ranks = [scheme.classify(y / 100).rank for y in range(100, -1, -1)]
        assert ranks == sorted(ranks)
    assert FIELD_BANDS.classify(0.25) is Band.BODY4


def test_summarize_bands_counts_lines_per_band(make_line) -> None:
    lines = [
        make_line("PODER JUDICIÁRIO", 760),
        make_line("TRIBUNAL DE JUSTIÇA", 745),
        make_line("Despacho", 500),
        make_line("assinado eletronicamente", 60),
    ]
    summaries = summarize_bands(lines, DEFAULT_BANDS, sample_count=1)
    assert [(s.band, s.count) for s in summaries] == [
        (Band.HEADER, 2),
        (Band.BODY1, 1),
        (Band.FOOTER, 1),
    ]
    header = summaries[0]
    assert header.samples == ["PODER JUDICIÁRIO"]
    assert header.bbox_p25[1] <= header.bbox[1] <= header.bbox_p75[1]


def test_band_text_selects_paragraphs_in_band(make_paragraph) -> None:
    paragraphs = [
        make_paragraph("cabeçalho", ny0=0.9, ny1=0.95),
        make_paragraph("subtítulo", ny0=0.8, ny1=0.83),
        make_paragraph("corpo", ny0=0.5, ny1=0.6),
    ]
    assert band_text(paragraphs, DEFAULT_BANDS, Band.SUBHEADER) == "subtítulo"


def test_header_and_footer_from_geometry(make_paragraph) -> None:
    paragraphs = [
        make_paragraph("PODER JUDICIÁRIO", ny0=0.9, ny1=0.95),
        make_paragraph("corpo do despacho", ny0=0.4, ny1=0.7),
        make_paragraph("Documento assinado eletronicamente", ny0=0.05, ny1=0.08),
    ]
    assert header_text(paragraphs) == "PODER JUDICIÁRIO"
    assert footer_text(paragraphs) == "Documento assinado eletronicamente"


def test_header_and_footer_fall_back_to_text_without_geometry() -> None:
    paragraphs = [Paragraph(page=1, index=0, lines=[], text="sem caixa", bbox=None)]
    text = "linha 1\n\nlinha 2\nlinha 3\nlinha 4\nlinha 5"
    assert header_text(paragraphs, fallback_text=text, fallback_lines=3) == "linha 1\nlinha 2\nlinha 3"
    assert footer_text(paragraphs, fallback_text=text, fallback_lines=2) == "linha 4\nlinha 5"


def test_density_is_bounded(make_line) -> None:
    dense = [make_line("x" * 40, 700 - 12 * i, x1=250) for i in range(10)]
    sparse = [make_line("a b", 700), make_line("c d", 100)]
    for lines in (dense, sparse):
        d = estimate_density(lines)
        assert 0.0 <= d <= 100.0
    assert estimate_density(dense) > estimate_density(sparse)
    assert estimate_density([]) == 0.0
    assert blank_percentage([]) == 100.0


def test_first_and_last_page_paragraphs(make_paragraph) -> None:
    paragraphs = [make_paragraph("a", page=3), make_paragraph("b", page=4), make_paragraph("c", page=5)]
    assert [p.text for p in first_page_paragraphs(paragraphs)] == ["a"]
    assert [p.text for p in last_page_paragraphs(paragraphs)] == ["c"]
    assert first_page_paragraphs([]) == []
