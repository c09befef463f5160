"""
Excel export: one workbook per batch.
Sheet "Documents": one row per document, one column per field.
Sheet "Fields": one row per selected field (value, method, page).
Sheet "Stability": one row per paragraph position and n-gram, when a report is given.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .types import ParagraphStability, SourceResult

logger = logging.getLogger(__name__)

try:
    import openpyxl
    from openpyxl import Workbook
except ImportError:
    Workbook = None  # type: ignore
    openpyxl = None  # type: ignore

DOCUMENT_COLUMNS = ["Source", "Start_Page", "End_Page", "Title", "Type", "Bucket", "Role", "Density", "Missing"]


def _field_columns(results: Sequence[SourceResult]) -> List[str]:
    """Field names in first-seen order across all documents."""
    seen: List[str] = []
    for r in results:
        for doc in r.documents:
            for f in doc.fields:
                if f.name not in seen:
                    seen.append(f.name)
    return seen


def export_to_excel(
    results: List[SourceResult],
    output_path: Path,
    stability: Optional[Sequence[ParagraphStability]] = None,
) -> None:
    """Write one Excel file; sources that failed appear with their error in the Title column."""
    if openpyxl is None or Workbook is None:
        raise ImportError("openpyxl is required. Install with: pip install openpyxl")

    wb = Workbook()
    ws = wb.active
    ws.title = "Documents"
    field_names = _field_columns(results)
    ws.append(DOCUMENT_COLUMNS + field_names)

    fields_ws = wb.create_sheet("Fields")
    fields_ws.append(["Source", "Start_Page", "End_Page", "Field", "Value", "Method", "Page", "Weight"])

    rows = 0
    for r in results:
        source = Path(r.source).name
        if not r.documents and "error" in r.debug:
            ws.append([source, "", "", f"ERROR: {r.debug['error']}"] + [""] * (len(DOCUMENT_COLUMNS) - 4 + len(field_names)))
            rows += 1
            continue
        for doc in r.documents:
            b = doc.boundary
            row = [
                source,
                b.start_page,
                b.end_page,
                b.sanitized_title,
                b.detected_type.value,
                doc.bucket,
                doc.role,
                round(doc.density, 2),
                ", ".join(doc.missing),
            ]
            row += [doc.field_value(name) for name in field_names]
            ws.append(row)
            rows += 1
            for f in doc.fields:
                fields_ws.append(
                    [source, b.start_page, b.end_page, f.name, f.cleaned_value, f.method, f.page, round(f.weight, 4)]
                )

    if stability is not None:
        st = wb.create_sheet("Stability")
        st.append(["Paragraph", "Docs_With_Paragraph", "Kind", "Ngram", "Docfreq", "TF"])
        for p in stability:
            groups = (
                ("stable_bigram", p.stable_bigrams),
                ("stable_trigram", p.stable_trigrams),
                ("variable_bigram", p.variable_bigrams),
                ("variable_trigram", p.variable_trigrams),
            )
            for kind, stats in groups:
                for s in stats:
                    st.append([p.paragraph, p.docs_with_par, kind, s.ngram, s.docfreq, s.tf])

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    logger.info("Saved Excel to %s (%d document rows)", output_path, rows)
