from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from despacho_extraction.excel_export import DOCUMENT_COLUMNS, export_to_excel
from despacho_extraction.types import (
    DateValue,
    DocumentBoundary,
    DocumentRecord,
    MissingValue,
    MoneyValue,
    NgramStat,
    ParagraphStability,
    SourceResult,
    TextValue,
    ValidatedField,
)

openpyxl = pytest.importorskip("openpyxl")


def _results():
    doc = DocumentRecord(
        boundary=DocumentBoundary(1, 2, "1 - Despacho (123)", "Despacho"),
        density=0.4567,
        bucket="principal",
        role="despacho",
        fields=[
            ValidatedField("PERITO", TextValue("Ana Souza"), "pattern:perito_label@body2", page=1, weight=0.7),
            ValidatedField("VALOR_ARBITRADO_JZ", MoneyValue(Decimal("1500.00")), "directed:jz_first_page", 1, weight=0.85),
            ValidatedField("DATA", DateValue(date(2024, 9, 10)), "doc_metadata", 2, weight=0.45),
            ValidatedField("ASSINANTE", MissingValue("missing_required"), "missing_required"),
        ],
        missing=["ASSINANTE"],
    )
    certidao = DocumentRecord(
        boundary=DocumentBoundary(3, 3, "Certidão", "Certidão"),
        role="certidao",
        fields=[ValidatedField("VALOR_ARBITRADO_CM", MoneyValue(Decimal("1500.00")), "pattern:valor@body1", 3)],
    )
    return [
        SourceResult("/data/processo.pdf", 3, [doc, certidao]),
        SourceResult("/data/quebrado.pdf", 0, debug={"error": "cannot open broken document"}),
    ]


def test_documents_and_fields_sheets(tmp_path: Path) -> None:
    out = tmp_path / "out" / "despachos.xlsx"
    export_to_excel(_results(), out)
    wb = openpyxl.load_workbook(out)
    assert wb.sheetnames == ["Documents", "Fields"]

    rows = list(wb["Documents"].iter_rows(values_only=True))
    assert list(rows[0]) == DOCUMENT_COLUMNS + ["PERITO", "VALOR_ARBITRADO_JZ", "DATA", "ASSINANTE", "VALOR_ARBITRADO_CM"]
    first = dict(zip(rows[0], rows[1]))
    assert first["Source"] == "processo.pdf"
    assert (first["Start_Page"], first["End_Page"], first["Title"]) == (1, 2, "Despacho")
    assert (first["Type"], first["Bucket"], first["Role"]) == ("bookmark", "principal", "despacho")
    assert first["Density"] == 0.46
    assert first["Missing"] == "ASSINANTE"
    assert (first["PERITO"], first["VALOR_ARBITRADO_JZ"], first["DATA"]) == ("Ana Souza", "1500.00", "2024-09-10")
    second = dict(zip(rows[0], rows[2]))
    assert (second["Role"], second["VALOR_ARBITRADO_CM"]) == ("certidao", "1500.00")
    error = dict(zip(rows[0], rows[3]))
    assert error["Source"] == "quebrado.pdf"
    assert error["Title"] == "ERROR: cannot open broken document"
    assert len(rows) == 4

    fields = list(wb["Fields"].iter_rows(values_only=True))
    assert fields[0] == ("Source", "Start_Page", "End_Page", "Field", "Value", "Method", "Page", "Weight")
    assert fields[2] == ("processo.pdf", 1, 2, "VALOR_ARBITRADO_JZ", "1500.00", "directed:jz_first_page", 1, 0.85)
    assert len(fields) == 6


def test_stability_sheet(tmp_path: Path) -> None:
    report = [
        ParagraphStability(
            paragraph=1,
            docs_with_par=5,
            stable_bigrams=[NgramStat("honorarios periciais", 5, 6)],
            variable_trigrams=[NgramStat("perito ana souza", 1, 1)],
        )
    ]
    out = tmp_path / "despachos.xlsx"
    export_to_excel(_results(), out, stability=report)
    wb = openpyxl.load_workbook(out)
    assert wb.sheetnames == ["Documents", "Fields", "Stability"]
    rows = list(wb["Stability"].iter_rows(values_only=True))
    assert rows == [
        ("Paragraph", "Docs_With_Paragraph", "Kind", "Ngram", "Docfreq", "TF"),
        (1, 5, "stable_bigram", "honorarios periciais", 5, 6),
        (1, 5, "variable_trigram", "perito ana souza", 1, 1),
    ]
