"""
Document metadata fallbacks: signer, signing date, SEI footer metadata, origin
(vara / comarca) and interested party, read from the document's own header,
footer, and last pages. These feed the merge stage as low-weight candidates.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Tuple

from .field_cleaning import MONTHS, find_dates
from .text_utils import collapse_spaced_letters, normalize_whitespace, remove_diacritics
from .types import FieldCandidate

logger = logging.getLogger(__name__)

# Weights for metadata-derived candidates; rule and template candidates outrank them.
METADATA_WEIGHTS = {
    "PROCESSO_ADMINISTRATIVO": 0.55,
    "VARA": 0.55,
    "COMARCA": 0.55,
    "PERITO": 0.50,
    "ESPECIALIDADE": 0.45,
    "DATA": 0.45,
    "ASSINANTE": 0.50,
}

CARGO_KEYWORDS = (
    "diretor", "diretora", "presidente", "juiz", "juíza", "desembargador", "desembargadora",
    "secretário", "secretaria", "chefe", "coordenador", "coordenadora", "gerente", "perito",
    "analista", "assessor", "assessora", "procurador", "procuradora",
)

_DOC_SIGNED_RE = re.compile(
    r"documento\s+assinado\s+eletronicamente\s+por\s+([^\W\d_][\w .'’\-]*?)(?:,|\sem\s|\n|$)",
    re.IGNORECASE,
)
_SIGNED_BY_RE = re.compile(r"assinado(?:\s+digitalmente|\s+eletronicamente)?\s+por\s+([^\W\d_][^\W\d_ .'’\-]*(?:[ .'’\-]+[^\W\d_]+)*)", re.IGNORECASE)
_SIGNATURE_LABEL_RE = re.compile(r"assinatura\s*:(.+)", re.IGNORECASE)
_NAME_LINE_RE = re.compile(
    r"^[A-ZÁÉÍÓÚÂÊÔÃÕÇ][A-Za-zÁÉÍÓÚÂÊÔÃÕÇçãõâêîôûáéíóúàèìòù'`\-]+"
    r"(\s+[A-ZÁÉÍÓÚÂÊÔÃÕÇ][A-Za-zÁÉÍÓÚÂÊÔÃÕÇçãõâêîôûáéíóúàèìòù'`\-]+){1,4}"
    r"(\s*[,–-]\s*.+)?$"
)
_DATE_LIKE_RE = re.compile(r"\d{2}[\\/]\d{2}[\\/]\d{2,4}")
_SIGNED_DATE_RE = re.compile(r"assinado[^\n]{0,120}?(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})", re.IGNORECASE)
_EXTENSO_RE = re.compile(
    r"(\d{1,2})\s+de\s+(janeiro|fevereiro|março|marco|abril|maio|junho|julho|agosto|setembro|outubro|novembro|dezembro)\s+de\s+(\d{4})",
    re.IGNORECASE,
)

_SEI_PROCESS_RE = re.compile(r"Processo\s+n[º°]?\s*(\d{6,7}-\d{2}\.\d{4}\.\d\.\d{2}(?:\.\d{4})?)", re.IGNORECASE)
_SEI_PROCESS_ALT_RE = re.compile(r"SEI\s+(\d{6,7}-\d{2}\.\d{4}\.\d\.\d{2}(?:\.\d{4})?)", re.IGNORECASE)
_SEI_DOC_RE = re.compile(r"SEI\s*n[º°]?\s*(\d{4,})", re.IGNORECASE)
_CRC_RE = re.compile(r"CRC\s+([A-Z0-9]+)", re.IGNORECASE)
_VERIFIER_RE = re.compile(r"verificador\s+(\d{4,})", re.IGNORECASE)
_AUTH_URL_RE = re.compile(r"https?://\S+autentica\S*", re.IGNORECASE)

_VARA_RE = re.compile(r"((?:\d+\s*[ªºa]\s+)?(?:vara|juizado)\b[^,;\n]{0,80}?)(?=\s*(?:[,;\n]|da comarca|$))", re.IGNORECASE)
_COMARCA_RE = re.compile(r"comarca\s+d[eao]\s+([^,;.\n/]{2,60}?)(?=\s*(?:[,;.\n/]|-|$))", re.IGNORECASE)
_INTERESTED_RE = re.compile(r"interessad[oa]\s*:\s*([^,;\n–\-]{4,80}?)(?:\s*[,–\-]\s*([^;\n]{3,80}?))?\s*(?:[;\n]|$)", re.IGNORECASE)


@dataclass
class SeiMetadata:
    process: str = ""
    doc_number: str = ""
    crc: str = ""
    verifier: str = ""
    auth_url: str = ""
    signer: str = ""
    signed_at: str = ""


def normalize_signer_name(value: str) -> str:
    """Strip certificate syntax and non-name characters."""
    if not value:
        return ""
    m = re.search(r"\bCN\s*=\s*([^,;/]+)", value, re.IGNORECASE)
    v = m.group(1) if m else value
    v = collapse_spaced_letters(v)
    v = re.sub(r"[^A-Za-zÀ-ÖØ-öø-ÿ\s'\-]+", " ", v)
    return normalize_whitespace(v)


def _looks_generic(line: str) -> bool:
    low = remove_diacritics(line).lower()
    return any(k in low for k in ("poder judiciario", "tribunal de justica", "estado da paraiba", "documento assinado"))


def extract_signer(text: str) -> str:
    """
    Signer name from the closing text of a document.
    Explicit signature phrases first, then an upper-case name / cargo line read bottom-up.
    """
    if not text:
        return ""
    for pattern in (_DOC_SIGNED_RE, _SIGNED_BY_RE, _SIGNATURE_LABEL_RE):
        # Last occurrence: the closing signature block wins over quoted ones.
        matches = list(pattern.finditer(text))
        if matches:
            name = normalize_signer_name(matches[-1].group(1))
            if name:
                return name

    lines = [l.strip() for l in text.splitlines() if l.strip()]
    for line in reversed(lines):
        if len(line) < 8 or len(line) > 120:
            continue
        if _DATE_LIKE_RE.search(line):
            continue
        low = line.lower()
        if "sei" in low.split() or "pg." in low or "página" in low:
            continue
        if _looks_generic(line) or low == line:
            continue
        if len(line.split()) < 2:
            continue
        if any(k in low for k in CARGO_KEYWORDS) or _NAME_LINE_RE.match(line):
            return line
    return ""


def extract_signed_at(text: str, today: Optional[date] = None) -> str:
    """ISO signing date: near 'assinado', else extenso, else first plausible date."""
    if not text:
        return ""
    m = _SIGNED_DATE_RE.search(text)
    if m:
        found = find_dates(m.group(1), today)
        if found:
            return found[0][1].isoformat()
    for m in _EXTENSO_RE.finditer(text):
        month = MONTHS.get(remove_diacritics(m.group(2)).lower(), 0)
        found = find_dates(f"{m.group(1)}/{month}/{m.group(3)}", today) if month else ()
        if found:
            return found[0][1].isoformat()
    found = find_dates(text, today)
    return found[0][1].isoformat() if found else ""


def extract_sei_metadata(text: str, title: str = "", today: Optional[date] = None) -> SeiMetadata:
    """SEI footer metadata from the last pages and footer text."""
    meta = SeiMetadata()
    if not text:
        return meta
    m = _SEI_PROCESS_RE.search(text) or _SEI_PROCESS_ALT_RE.search(text)
    if m:
        meta.process = m.group(1).strip()
    m = _SEI_DOC_RE.search(text) or re.search(r"\((\d{4,})\)", title or "")
    if m:
        meta.doc_number = m.group(1).strip()
    m = _CRC_RE.search(text)
    if m:
        meta.crc = m.group(1).strip()
    m = _VERIFIER_RE.search(text)
    if m:
        meta.verifier = m.group(1).strip()
    m = _AUTH_URL_RE.search(text)
    if m:
        meta.auth_url = m.group(0).rstrip(".,")
    if "assinado eletronicamente" in text.lower():
        meta.signer = extract_signer(text)
        meta.signed_at = extract_signed_at(text, today)
    return meta


def extract_origin(header: str) -> Tuple[str, str]:
    """(vara, comarca) named in the header, empty strings when absent."""
    text = collapse_spaced_letters(header or "")
    vara = _VARA_RE.search(text)
    comarca = _COMARCA_RE.search(text)
    return (
        normalize_whitespace(vara.group(1)) if vara else "",
        normalize_whitespace(comarca.group(1)) if comarca else "",
    )


def extract_interested(text: str) -> Tuple[str, str]:
    """(name, profession) from an 'Interessado: NAME - PROFESSION' line."""
    m = _INTERESTED_RE.search(text or "")
    if not m:
        return "", ""
    return normalize_whitespace(m.group(1)), normalize_whitespace(m.group(2) or "")


def metadata_candidates(
    header: str,
    body_text: str,
    closing_text: str,
    page: int,
    title: str = "",
    today: Optional[date] = None,
) -> List[FieldCandidate]:
    """Low-weight candidates from the document's own header / footer reconstruction."""
    sei = extract_sei_metadata(closing_text, title, today)
    signer = sei.signer or extract_signer(closing_text)
    signed_at = sei.signed_at or extract_signed_at(closing_text, today)
    vara, comarca = extract_origin(header)
    name, profession = extract_interested(body_text)
    values = {
        "PROCESSO_ADMINISTRATIVO": sei.process,
        "VARA": vara,
        "COMARCA": comarca,
        "PERITO": name,
        "ESPECIALIDADE": profession,
        "DATA": signed_at,
        "ASSINANTE": signer,
    }
    out: List[FieldCandidate] = []
    for field_name, value in values.items():
        if not value:
            continue
        out.append(
            FieldCandidate(
                name=field_name,
                raw_value=value,
                method="doc_metadata",
                weight=METADATA_WEIGHTS[field_name],
                page=page,
            )
        )
    logger.debug("Metadata candidates on page %d: %s", page, sorted(c.name for c in out))
    return out
