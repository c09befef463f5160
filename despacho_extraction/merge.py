"""
Module 5: Field Merge & Validation.
Candidates from every strategy -> canonical names -> cleaned, shape-checked values ->
one winner per field (highest weight, then longest value) -> catalog enrichment ->
explicit entries for required fields that nothing could fill.
Also: document classification (bucket and role) and record linkage to detector output.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from .config import PipelineConfig
from .field_cleaning import clean_value, normalize_field_name, validate_value
from .reference import Catalogs, map_area_fallback
from .text_utils import digits_only, normalize_for_match
from .types import (
    DetectionResult,
    DocumentBoundary,
    FieldCandidate,
    FieldResult,
    IdentifierValue,
    MissingValue,
    MoneyValue,
    TextValue,
    ValidatedField,
)

logger = logging.getLogger(__name__)

MISSING_REQUIRED = "missing_required"
CATALOG_METHOD = "catalogo_peritos"
HONORARIOS_METHOD = "tabela_honorarios"

# Matched on lower-cased text with accents kept: "perícia" must not hit "periciais".
BUCKET_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("laudo", ("laudo", "quesito", "perícia", "pericial", "esclarecimento", "parecer")),
    ("principal", ("despacho", "decisão", "senten", "certidão", "ofício", "nota de empenho",
                   "autorização", "requisição")),
    ("apoio", ("anexo", "relatório", "planilha")),
)
BUCKET_HEAD_CHARS = 2000

_NOISY_PERITO_WORDS = ("perito", "perita", "engenheiro", "medic", "grafotec", "psicol", "assistente social")
_GENERIC_SPECIALTIES = frozenset({"perito", "perita", "pericia", "especialista", "profissional", "tecnico", "outros"})


@dataclass(frozen=True)
class DocumentClassification:
    bucket: str = "outro"
    role: str = "other"


@dataclass
class RejectedCandidate:
    candidate: FieldCandidate
    reason: str


@dataclass
class MergeResult:
    fields: List[ValidatedField] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    rejected: List[RejectedCandidate] = field(default_factory=list)
    area: str = ""  # honorarios area inferred from the specialty, '' if none

    def get(self, name: str) -> Optional[ValidatedField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class LinkMatch:
    detection: DetectionResult
    ratio: float
    intersection: int


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _contains_any(norm: str, hints: Sequence[str]) -> bool:
    return any(h and normalize_for_match(h) in norm for h in hints)


def classify_bucket(title: str, text: str) -> str:
    """laudo / principal / apoio / outro from the title and the start of the text."""
    name = (title or "").lower()
    snippet = (text or "")[:BUCKET_HEAD_CHARS].lower()
    for bucket, keywords in BUCKET_KEYWORDS:
        if any(k in name or k in snippet for k in keywords):
            return bucket
    return "outro"


def despacho_role(tail_text: str, config: PipelineConfig) -> str:
    """Destination of a despacho from its closing text; conselho wins over georc."""
    norm = normalize_for_match(tail_text)
    if _contains_any(norm, config.conselho_hints):
        return "encaminhamento_conselho"
    if _contains_any(norm, config.georc_hints):
        return "encaminhamento_georc"
    if _contains_any(norm, config.autorizacao_hints):
        return "autorizacao"
    return "despacho"


def classify_document(
    title: str,
    text: str,
    page_count: int,
    blank_pct: float,
    config: PipelineConfig,
) -> DocumentClassification:
    """
    Bucket from keywords; role from the despacho profile (hints, page count,
    blank percentage) and the destination hints in the last part of the text.
    """
    bucket = classify_bucket(title, text)
    head = normalize_for_match(f"{title or ''} {(text or '')[:BUCKET_HEAD_CHARS]}")
    title_norm = normalize_for_match(title)

    in_profile = (
        config.min_pages <= page_count <= config.max_pages
        and blank_pct <= config.blank_max_pct
    )
    if "laudo" in title_norm:
        role = "laudo"
    elif _contains_any(title_norm, config.certidao_hints) or (
        "certifico" in head and _contains_any(head, config.conselho_hints)
    ):
        role = "certidao"
    elif _contains_any(head, config.despacho_hints) and in_profile:
        role = despacho_role((text or "")[-config.role_tail_chars:], config)
    elif bucket == "laudo":
        role = "laudo"
    else:
        if _contains_any(head, config.despacho_hints):
            logger.debug(
                "Despacho hints but outside profile: pages=%d blank=%.1f%%", page_count, blank_pct
            )
        role = "other"
    return DocumentClassification(bucket=bucket, role=role)


# ---------------------------------------------------------------------------
# Candidate sources
# ---------------------------------------------------------------------------


def anchor_candidates(
    results: Sequence[FieldResult],
    page: int,
    config: Optional[PipelineConfig] = None,
) -> List[FieldCandidate]:
    """Found template captures as candidates; weight grows with capture confidence."""
    cfg = config or PipelineConfig()
    out = []
    for r in results:
        if r.missing or not r.value:
            continue
        out.append(
            FieldCandidate(
                name=r.field_key,
                raw_value=r.value,
                method=f"template:{r.field_id}",
                weight=cfg.anchor_base_weight + cfg.anchor_weight_span * r.confidence,
                page=page,
            )
        )
    return out


def detection_candidates(detection: DetectionResult, page: int) -> List[FieldCandidate]:
    return [
        FieldCandidate(name=name, raw_value=value, method="detector", weight=detection.confidence, page=page)
        for name, value in detection.fields.items()
        if value
    ]

    """Page-range overlap score: min(intersection / |a|, intersection / |b|), inclusive page counts."""
def overlap_ratio(a_start: int, a_end: int, b_start: int, b_end: int) -> float:
    """Intersection over the larger of the two spans: min(inter/|a|, inter/|b|)."""
    inter = min(a_end, b_end) - max(a_start, b_start) + 1
    if inter <= 0:
        return 0.0
    return min(inter / (a_end - a_start + 1), inter / (b_end - b_start + 1))


def link_detection(
    boundary: DocumentBoundary,
    detections: Sequence[DetectionResult],
    config: Optional[PipelineConfig] = None,
) -> Optional[LinkMatch]:
    """Best-overlapping detection, if it overlaps enough (or the boundary is short)."""
    cfg = config or PipelineConfig()
    best: Optional[LinkMatch] = None
    for det in detections:
        inter = min(det.end_page, boundary.end_page) - max(det.start_page, boundary.start_page) + 1
        if inter < 1:
            continue
        ratio = overlap_ratio(det.start_page, det.end_page, boundary.start_page, boundary.end_page)
        if best is None or ratio > best.ratio:
            best = LinkMatch(det, ratio, inter)
    if best is None:
        return None
    if best.ratio >= cfg.linkage_min_ratio or boundary.page_count <= cfg.linkage_short_boundary_pages:
        return best
    logger.debug(
        "Detection %d-%d rejected for boundary %d-%d (ratio %.3f)",
        best.detection.start_page, best.detection.end_page,
        boundary.start_page, boundary.end_page, best.ratio,
    )
    return None


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def _perito_is_noisy(value: str) -> bool:
    low = normalize_for_match(value)
    return "@" in value or any(k in low for k in _NOISY_PERITO_WORDS)


def _especialidade_is_weak(value: str) -> bool:
    norm = normalize_for_match(value)
    return len(norm) <= 6 or (" " not in norm and norm in _GENERIC_SPECIALTIES)


class FieldMerger:
    """Selects one validated value per field; catalogs are optional and read-only."""

    def __init__(self, config: Optional[PipelineConfig] = None, catalogs: Optional[Catalogs] = None) -> None:
        self.config = config or PipelineConfig()
        self.catalogs = catalogs or Catalogs()

    def merge(
        self,
        candidates: Sequence[FieldCandidate],
        classification: DocumentClassification,
        today: Optional[date] = None,
    ) -> MergeResult:
        result = MergeResult()
        selected: Dict[str, ValidatedField] = {}
        for cand in candidates:
            name = normalize_field_name(cand.name)
            value = clean_value(name, cand.raw_value, today)
            if value is None:
                result.rejected.append(RejectedCandidate(cand, "clean_failed"))
                logger.debug("Rejected %s=%r (%s): cleaning failed", name, cand.raw_value, cand.method)
                continue
            if not validate_value(name, value):
                result.rejected.append(RejectedCandidate(cand, "shape_invalid"))
                logger.debug("Rejected %s=%r (%s): shape rule", name, cand.raw_value, cand.method)
                continue
            vf = ValidatedField(
                name=name, value=value, method=cand.method, page=cand.page, bbox=cand.bbox, weight=cand.weight
            )
            current = selected.get(name)
            if current is None or self._better(vf, current):
                selected[name] = vf

        self._enrich_perito(selected)
        result.area = self._enrich_honorarios(selected)

        required = self.config.required_for(classification.role)
        ordered: List[ValidatedField] = []
        for name in required:
            vf = selected.pop(name, None)
            if vf is None:
                result.missing.append(name)
                vf = ValidatedField(name=name, value=MissingValue(MISSING_REQUIRED), method=MISSING_REQUIRED)
            ordered.append(vf)
        ordered.extend(selected[name] for name in sorted(selected))
        result.fields = ordered
        if result.missing:
            logger.info("Role %s: missing required fields %s", classification.role, result.missing)
        return result

    @staticmethod
    def _better(new: ValidatedField, current: ValidatedField) -> bool:
        if new.weight != current.weight:
            return new.weight > current.weight
        return len(new.cleaned_value) > len(current.cleaned_value)

    def _weak(self, vf: Optional[ValidatedField]) -> bool:
        return vf is None or vf.weight < self.config.catalog_min_confidence

    def _catalog_field(self, name: str, value, weight: float, page: int) -> ValidatedField:
        return ValidatedField(name=name, value=value, method=CATALOG_METHOD, page=page, weight=weight)

    def _enrich_perito(self, selected: Dict[str, ValidatedField]) -> None:
        catalog = self.catalogs.peritos
        if not len(catalog):
            return
        perito = selected.get("PERITO")
        cpf = selected.get("CPF_PERITO")
        match = catalog.resolve(
            perito.cleaned_value if perito else None,
            cpf.value.digits if cpf is not None and isinstance(cpf.value, IdentifierValue) else None,
        )
        if match is None:
            return
        info = match.info
        conf = min(0.9, max(0.55, match.confidence))
        page = perito.page if perito else (cpf.page if cpf else 0)
        logger.debug("Perito catalog match (%s, %.2f): %s", match.method, match.confidence, info.name)

        if info.name and (self._weak(perito) or _perito_is_noisy(perito.cleaned_value)):
            selected["PERITO"] = self._catalog_field("PERITO", TextValue(info.name), conf, page)
        if len(info.cpf) == 11 and (self._weak(cpf) or len(digits_only(cpf.cleaned_value)) != 11):
            formatted = f"{info.cpf[:3]}.{info.cpf[3:6]}.{info.cpf[6:9]}-{info.cpf[9:]}"
            selected["CPF_PERITO"] = self._catalog_field(
                "CPF_PERITO", IdentifierValue(info.cpf, formatted), conf, page
            )
        esp = selected.get("ESPECIALIDADE")
        if info.especialidade and (self._weak(esp) or _especialidade_is_weak(esp.cleaned_value)):
            selected["ESPECIALIDADE"] = self._catalog_field(
                "ESPECIALIDADE", TextValue(info.especialidade), conf, page
            )

    def _enrich_honorarios(self, selected: Dict[str, ValidatedField]) -> str:
        esp = selected.get("ESPECIALIDADE")
        if esp is None:
            return ""
        table = self.catalogs.honorarios
        order = ("VALOR_ARBITRADO_DE", "VALOR_ARBITRADO_JZ")
        if not self.config.honorarios_prefer_valor_de:
            order = order[::-1]
        valor: Optional[Decimal] = None
        for name in order:
            vf = selected.get(name)
            if vf is not None and isinstance(vf.value, MoneyValue):
                valor = vf.value.amount
                break
        match = table.match(esp.cleaned_value, valor) if len(table) else None
        if match is None:
            return map_area_fallback(esp.cleaned_value)
        entry = match.entry
        especie = selected.get("ESPECIE_DA_PERICIA")
        if entry.descricao and self._weak(especie):
            selected["ESPECIE_DA_PERICIA"] = ValidatedField(
                name="ESPECIE_DA_PERICIA", value=TextValue(entry.descricao), method=HONORARIOS_METHOD,
                page=esp.page, weight=match.confidence,
            )
        tabelado = selected.get("VALOR_TABELADO_ANEXO_I")
        if self._weak(tabelado):
            selected["VALOR_TABELADO_ANEXO_I"] = ValidatedField(
                name="VALOR_TABELADO_ANEXO_I", value=MoneyValue(entry.valor), method=HONORARIOS_METHOD,
                page=esp.page, weight=match.confidence,
            )
        return entry.area or table.map_area(esp.cleaned_value)
