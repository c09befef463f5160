"""
Despacho Extraction Pipeline:
Tokens → Lines → Paragraphs → Document Segmentation → per document:
Bands / Header / Footer → Classification → Template anchors + Pattern rules +
Directed rules + Paragraph rules + Metadata fallbacks + Linked detections →
Merge & Validation → Records → Excel / debug JSON → batch Stability report.
Single-document processing is synchronous and side-effect free; only the folder
runner touches the filesystem.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .anchor_engine import AnchorEngine, build_window_text
from .config import PipelineConfig
from .doc_metadata import extract_sei_metadata, metadata_candidates
from .excel_export import export_to_excel
from .layout_reader import PDFLayoutReader
from .line_builder import build_lines
from .logging_setup import setup_logging
from .merge import (
    FieldMerger,
    anchor_candidates,
    classify_document,
    detection_candidates,
    link_detection,
)
from .paragraph_builder import (
    band_text,
    blank_percentage,
    build_paragraphs,
    estimate_density,
    first_page_paragraphs,
    footer_text,
    header_text,
    last_page_paragraphs,
    page_text,
    paragraphs_for_pages,
    summarize_bands,
)
from .pattern_rules import (
    RuleSet,
    certidao_page_candidates,
    find_certidao_page,
    scan_bands,
    scan_directed,
    scan_paragraphs,
)
from .reference import Catalogs, load_catalogs
from .segmenter import AutomaticSegmenter, DocumentSegmenter
from .stability import analyze_stability
from .template_compiler import load_plan
from .text_utils import normalize_for_match
from .types import (
    Band,
    Bookmark,
    BoundaryType,
    DetectionResult,
    DocumentBoundary,
    DocumentRecord,
    ExtractionPlan,
    FieldCandidate,
    Line,
    Paragraph,
    ParagraphStability,
    SourceResult,
    Token,
)

logger = logging.getLogger(__name__)


class DocumentPipeline:
    """
    Reconstruction and extraction for court-document sources.
    Plans, rules and catalogs are loaded once and shared read-only.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        head_plan: Optional[ExtractionPlan] = None,
        tail_plan: Optional[ExtractionPlan] = None,
        rules: Optional[RuleSet] = None,
        catalogs: Optional[Catalogs] = None,
        automatic: Optional[AutomaticSegmenter] = None,
    ) -> None:
        self.config = cfg = config or PipelineConfig()
        self.segmenter = DocumentSegmenter(cfg, automatic)
        self.engine = AnchorEngine(cfg)
        if head_plan is None and cfg.head_template_path:
            head_plan = load_plan(cfg.head_template_path)
        if tail_plan is None and cfg.tail_template_path:
            tail_plan = load_plan(cfg.tail_template_path)
        self.head_plan = head_plan
        self.tail_plan = tail_plan
        if rules is None:
            rules = RuleSet.from_yaml(cfg.rules_path) if cfg.rules_path else RuleSet.default()
        self.rules = rules
        if catalogs is None:
            catalogs = load_catalogs(
                cfg.perito_catalog_path,
                cfg.honorarios_table_path,
                cfg.honorarios_aliases_path,
                cfg.laudo_hash_db_path,
                tolerance=cfg.honorarios_tolerance,
            )
        self.catalogs = catalogs
        self.merger = FieldMerger(cfg, catalogs)
        self._layout_reader: Optional[PDFLayoutReader] = None

    # ------------------------------------------------------------------
    # Folder runner
    # ------------------------------------------------------------------

    def process_folder(
        self,
        input_folder: Path,
        output_excel_path: Optional[Path] = None,
        debug_dir: Optional[Path] = None,
        today: Optional[date] = None,
    ) -> List[SourceResult]:
        """
        Process every PDF in the folder and write one workbook for the batch.
        Stability statistics are computed after every source has finished.
        """
        input_folder = Path(input_folder)
        output_excel_path = Path(output_excel_path or self.config.output_excel_path)
        debug_dir = Path(debug_dir) if debug_dir else self.config.debug_output_dir

        pdf_files = list(input_folder.glob("*.pdf")) + list(input_folder.glob("*.PDF"))
        pdf_files = sorted(set(pdf_files), key=lambda p: p.name.lower())
        if self.config.max_pdfs is not None:
            pdf_files = pdf_files[: self.config.max_pdfs]

        logger.info("Processing %d PDFs from %s", len(pdf_files), input_folder)
        results: List[SourceResult] = []
        paragraphs_by_doc: List[List[Paragraph]] = []
        for pdf_path in pdf_files:
            try:
                result = self.process_pdf(pdf_path, today=today)
                results.append(result)
                paragraphs_by_doc.extend(r.paragraphs for r in result.documents if r.boundary.parent is None)
                if debug_dir:
                    self._write_debug_json(result, debug_dir)
            except Exception as e:
                logger.exception("Failed to process %s: %s", pdf_path, e)
                results.append(SourceResult(source=str(pdf_path), total_pages=0, debug={"error": str(e)}))

        stability = self.stability_report(paragraphs_by_doc)
        export_to_excel(results, output_excel_path, stability)
        logger.info("Wrote %s with %d sources", output_excel_path, len(results))
        return results

    def process_pdf(self, pdf_path: Path, today: Optional[date] = None) -> SourceResult:
        pdf_path = Path(pdf_path)
        logger.info("Processing PDF: %s", pdf_path.name)
        if self._layout_reader is None:
            self._layout_reader = PDFLayoutReader()
        layout = self._layout_reader.read(pdf_path)
        if not layout.tokens:
            logger.warning("No text extracted from %s", pdf_path.name)
        result = self.process_source(
            layout.tokens, layout.bookmarks, layout.num_pages, str(pdf_path), today=today
        )
        return result

    def stability_report(self, documents: Sequence[Sequence[Paragraph]]) -> List[ParagraphStability]:
        return analyze_stability(documents, self.config)

    # ------------------------------------------------------------------
    # One source
    # ------------------------------------------------------------------

    def process_source(
        self,
        tokens: Sequence[Token],
        bookmarks: Sequence[Bookmark],
        total_pages: int,
        source_name: str = "",
        detections: Sequence[DetectionResult] = (),
        today: Optional[date] = None,
    ) -> SourceResult:
        """Lines, paragraphs and boundaries for the whole source, then one record per boundary."""
        lines_by_page = build_lines(tokens, self.config)
        paragraphs = build_paragraphs(lines_by_page, self.config)

        boundaries = self.segmenter.segment(bookmarks, total_pages)
        if self.config.split_anexos:
            boundaries = self._with_attachments(boundaries, bookmarks)

        records = [
            self.process_document(b, lines_by_page, paragraphs, detections, today)
            for b in boundaries
        ]
        debug: Dict[str, Any] = {
            "boundaries": [b.to_dict() for b in boundaries],
            "line_count": sum(len(v) for v in lines_by_page.values()),
            "paragraph_count": len(paragraphs),
        }
        logger.info("%s: %d documents", source_name or "source", len(records))
        return SourceResult(source=source_name, total_pages=total_pages, documents=records, debug=debug)

    def _with_attachments(
        self,
        boundaries: List[DocumentBoundary],
        bookmarks: Sequence[Bookmark],
    ) -> List[DocumentBoundary]:
        out: List[DocumentBoundary] = []
        for b in boundaries:
            out.append(b)
            if b.detected_type is BoundaryType.ANEXO:
                out.extend(self.segmenter.split_attachments(b, bookmarks))
        return out

    # ------------------------------------------------------------------
    # One document
    # ------------------------------------------------------------------

    def process_document(
        self,
        boundary: DocumentBoundary,
        lines_by_page: Dict[int, List[Line]],
        paragraphs: Sequence[Paragraph],
        detections: Sequence[DetectionResult] = (),
        today: Optional[date] = None,
    ) -> DocumentRecord:
        cfg = self.config
        start, end = boundary.start_page, boundary.end_page
        pages = range(start, end + 1)
        doc_lines = [l for p in pages for l in lines_by_page.get(p, [])]
        doc_pars = paragraphs_for_pages(paragraphs, start, end)
        text = "\n".join(page_text(lines_by_page.get(p, [])) for p in pages)
        first_pars = first_page_paragraphs(doc_pars)
        last_pars = last_page_paragraphs(doc_pars)

        header = header_text(first_pars, cfg.header_top_pct, cfg.header_max_paragraphs, text, cfg.fallback_text_lines)
        subheader = band_text(first_pars, cfg.band_scheme, Band.SUBHEADER)
        footer = footer_text(last_pars, cfg.footer_bottom_pct, cfg.footer_max_paragraphs, text, cfg.fallback_text_lines)
        density = estimate_density(doc_lines)
        blank = blank_percentage(doc_lines)
        classification = classify_document(boundary.sanitized_title, text, boundary.page_count, blank, cfg)
        role = classification.role

        candidates: List[FieldCandidate] = []
        field_results = []
        if self.head_plan is not None:
            window = build_window_text(doc_pars, head=True, count=cfg.head_window_paragraphs)
            found = self.engine.run(self.head_plan, window)
            field_results.extend(found)
            candidates.extend(anchor_candidates(found, start, cfg))
        if self.tail_plan is not None:
            window = build_window_text(doc_pars, head=False, count=cfg.tail_window_paragraphs)
            found = self.engine.run(self.tail_plan, window)
            field_results.extend(found)
            candidates.extend(anchor_candidates(found, end, cfg))

        candidates.extend(scan_bands(self.rules.patterns, doc_lines, role, cfg.field_band_scheme))
        candidates.extend(scan_directed(self.rules.directed, lines_by_page, start, role))
        candidates.extend(scan_paragraphs(self.rules.paragraphs, doc_pars, role))
        certidao_page = None
        if role != "certidao" and end > start:
            certidao_page = find_certidao_page(
                doc_pars, start + 1, end, cfg.certidao_title_hints, cfg.certidao_body_hints,
                cfg.certidao_top_paragraphs,
            )
            if certidao_page is not None:
                candidates.extend(certidao_page_candidates(doc_pars, certidao_page, cfg.certidao_date_hints))

        closing = "\n".join(p.text for p in last_pars) or footer
        candidates.extend(
            metadata_candidates(header, text, closing, end, boundary.raw_title, today)
        )

        link = link_detection(boundary, detections, cfg)
        if link is not None:
            candidates.extend(detection_candidates(link.detection, start))

        merged = self.merger.merge(candidates, classification, today)
        hash_entry = self.catalogs.laudo_hashes.lookup(text) if len(self.catalogs.laudo_hashes) else None

        header_norm = normalize_for_match(header)
        footer_norm = normalize_for_match(f"{footer}\n{closing}")
        sei = extract_sei_metadata(closing, boundary.raw_title, today)
        debug: Dict[str, Any] = {
            "blank_pct": round(blank, 2),
            "header_hint": any(normalize_for_match(h) in header_norm for h in cfg.header_hints),
            "footer_hint": any(normalize_for_match(h) in footer_norm for h in cfg.footer_hints),
            "candidate_count": len(candidates),
            "rejected": [
                {"name": r.candidate.name, "value": r.candidate.raw_value,
                 "method": r.candidate.method, "reason": r.reason}
                for r in merged.rejected
            ],
            "sei": {
                "process": sei.process, "doc_number": sei.doc_number, "crc": sei.crc,
                "verifier": sei.verifier, "auth_url": sei.auth_url,
            },
        }
        if merged.area:
            debug["area"] = merged.area
        if certidao_page is not None:
            debug["certidao_page"] = certidao_page
        if link is not None:
            debug["linked_detection"] = {
                "start_page": link.detection.start_page,
                "end_page": link.detection.end_page,
                "doc_type": link.detection.doc_type,
                "ratio": round(link.ratio, 4),
            }

        logger.info(
            "Document %d-%d %r: bucket=%s role=%s fields=%d missing=%d",
            start, end, boundary.sanitized_title, classification.bucket, role,
            sum(1 for f in merged.fields if not f.missing), len(merged.missing),
        )
        return DocumentRecord(
            boundary=boundary,
            header=header,
            subheader=subheader,
            footer=footer,
            bands=summarize_bands(doc_lines, cfg.band_scheme, cfg.band_sample_count),
            density=density,
            bucket=classification.bucket,
            role=role,
            fields=merged.fields,
            missing=merged.missing,
            field_results=field_results,
            hash_match=hash_entry.to_dict() if hash_entry else None,
            paragraphs=doc_pars,
            debug=debug,
        )

    def _write_debug_json(self, result: SourceResult, debug_dir: Path) -> None:
        """Write optional debug JSON per source."""
        debug_dir.mkdir(parents=True, exist_ok=True)
        name = Path(result.source).stem
        safe = "".join(c if c.isalnum() or c in "._-" else "_" for c in name)
        path = debug_dir / f"{safe}_debug.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(source_to_dict(result), f, indent=2, ensure_ascii=False)
        logger.debug("Wrote debug JSON: %s", path)


def record_to_dict(record: DocumentRecord) -> Dict[str, Any]:
    return {
        "boundary": record.boundary.to_dict(),
        "bucket": record.bucket,
        "role": record.role,
        "header": record.header,
        "subheader": record.subheader,
        "footer": record.footer,
        "density": round(record.density, 2),
        "bands": [
            {
                "band": s.band.value,
                "count": s.count,
                "bbox": list(s.bbox),
                "bbox_p25": list(s.bbox_p25),
                "bbox_p75": list(s.bbox_p75),
                "font": s.font,
                "font_size": s.font_size,
                "samples": s.samples,
            }
            for s in record.bands
        ],
        "fields": [f.to_dict() for f in record.fields],
        "missing": record.missing,
        "field_results": [r.to_dict() for r in record.field_results],
        "hash_match": record.hash_match,
        "debug": record.debug,
    }


def source_to_dict(result: SourceResult) -> Dict[str, Any]:
    return {
        "source": result.source,
        "total_pages": result.total_pages,
        "documents": [record_to_dict(r) for r in result.documents],
        "debug": result.debug,
    }


def run_pipeline(
    input_folder: Path,
    output_excel_path: Optional[Path] = None,
    debug_dir: Optional[Path] = None,
    config: Optional[PipelineConfig] = None,
) -> List[SourceResult]:
    """Convenience entry: configure logging and run the pipeline on a folder."""
    config = config or PipelineConfig()
    setup_logging(config.log_level, config.log_file)
    pipeline = DocumentPipeline(config=config)
    return pipeline.process_folder(input_folder, output_excel_path, debug_dir)
