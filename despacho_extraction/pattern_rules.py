"""
Literal pattern rules that propose field candidates.
- PatternRule: scanned band by band over the dense field band scheme.
- DirectedRule: only on a fixed page of the document (start page + offset).
- ParagraphRule: only inside the first paragraph containing all hint words.
- Certidão page scan: a certidão bundled after a despacho yields the CM value and date.
Rules load from YAML; a built-in set covers the despacho family.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

import yaml

from .config import BandScheme
from .errors import ConfigError
from .field_cleaning import normalize_field_name
from .text_utils import collapse_spaced_letters, normalize_for_match, normalize_whitespace
from .types import Band, BBox, FieldCandidate, Line, Paragraph

logger = logging.getLogger(__name__)

_MONEY = r"(R\$\s*\d[\d.,]*\d)"
_STOP = r"(?=\s*(?:[,;()\n]|CPF|$))"

_BAND_NAMES = {b.value: b for b in Band}


@dataclass(frozen=True)
class PatternRule:
    field: str
    pattern: Pattern
    weight: float = 0.6
    bands: Tuple[Band, ...] = ()
    roles: Tuple[str, ...] = ()
    group: int = 1
    label: str = ""

    def applies(self, role: str) -> bool:
        return not self.roles or role in self.roles


@dataclass(frozen=True)
class DirectedRule:
    field: str
    pattern: Pattern
    page_offset: int = 0
    weight: float = 0.75
    roles: Tuple[str, ...] = ()
    group: int = 1
    label: str = ""

    def applies(self, role: str) -> bool:
        return not self.roles or role in self.roles


@dataclass(frozen=True)
class ParagraphRule:
    field: str
    hints: Tuple[str, ...]
    pattern: Pattern
    weight: float = 0.85
    roles: Tuple[str, ...] = ()
    group: int = 1
    label: str = ""

    def applies(self, role: str) -> bool:
        return not self.roles or role in self.roles


def _compile(pattern: str, where: str) -> Pattern:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ConfigError(f"Invalid regex in {where}: {e}") from e


_DESPACHO_ROLES = ("despacho", "autorizacao", "encaminhamento_georc", "encaminhamento_conselho")
_DE_ROLES = ("autorizacao", "encaminhamento_georc", "encaminhamento_conselho")


def _default_rule_data() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "patterns": [
            {"field": "PROCESSO_JUDICIAL", "label": "cnj",
             "pattern": r"(\d{7}\s*-\s*\d{2}\s*\.\s*\d{4}\s*\.\s*\d\s*\.\s*\d{2}\s*\.\s*\d{4})",
             "weight": 0.7},
            {"field": "PROCESSO_ADMINISTRATIVO", "label": "sei_label",
             "pattern": r"processo\s+(?:administrativo\s+)?(?:sei\s+)?n[º°o]?\.?\s*[:\-]?\s*(\d{6,7}-\d{2}\.\d{4}\.\d\.\d{2})(?![\d.])",
             "weight": 0.8, "bands": ["header", "subheader", "body1"]},
            {"field": "CPF_PERITO", "label": "cpf_label",
             "pattern": r"CPF(?:\s*/\s*CNPJ)?\s*(?:n[º°o]?\.?)?\s*[:\-]?\s*(\d{3}\.?\d{3}\.?\d{3}\s*-?\s*\d{2})",
             "weight": 0.8},
            {"field": "PERITO", "label": "perito_label",
             "pattern": r"perit[oa](?:\s+nomead[oa])?\s*[:\-]\s*([^,;()\n]{4,80}?)" + _STOP,
             "weight": 0.7},
            {"field": "PERITO", "label": "perito_favor",
             "pattern": r"em favor d[oa]\s+perit[oa]\s+([^,;()\n]{4,80}?)" + _STOP,
             "weight": 0.65},
            {"field": "VARA", "label": "vara",
             "pattern": r"((?:\d+\s*[ªºa]?\s+)?(?:vara|juizado)\b[^,;\n]{0,80}?)(?=\s*(?:[,;\n]|da comarca|$))",
             "weight": 0.6},
            {"field": "COMARCA", "label": "comarca",
             "pattern": r"comarca\s+d[eao]\s+([^,;.\n/]{2,60}?)(?=\s*(?:[,;.\n/]|-|$))",
             "weight": 0.6},
            {"field": "PROMOVENTE", "label": "promovente_label",
             "pattern": r"(?:promovente|requerente|autor[a]?)\s*:\s*([^;\n]{3,120}?)(?=\s*(?:[;\n]|promovid|requerid|r[ée]u\b|$))",
             "weight": 0.7},
            {"field": "PROMOVIDO", "label": "promovido_label",
             "pattern": r"(?:promovid[oa]|requerid[oa]|r[ée]u)\s*:\s*([^;\n]{3,120}?)(?=\s*(?:[;\n]|perit|$))",
             "weight": 0.7},
            {"field": "ESPECIALIDADE", "label": "especialidade_label",
             "pattern": r"(?:especialidade|profiss[ãa]o)\s*:\s*([^,;()\n]{3,80}?)(?=\s*(?:[,;()\n]|$))",
             "weight": 0.7},
            {"field": "ESPECIE_DA_PERICIA", "label": "especie_label",
             "pattern": r"(?:esp[ée]cie|natureza)\s+d[ae]\s+per[íi]cia\s*:\s*([^;\n]{3,150}?)(?=\s*(?:[;\n]|$))",
             "weight": 0.7},
            {"field": "VALOR_ARBITRADO_JZ", "label": "valor_arbitrado",
             "pattern": r"(?:honor[áa]rios|valor)[^;\n]{0,80}?arbitrad[oa]s?[^;\n]{0,40}?" + _MONEY,
             "weight": 0.6, "roles": list(_DESPACHO_ROLES)},
            {"field": "DATA", "label": "data_numeric",
             "pattern": r"(?:\bem|data\s*:?)\s+(\d{1,2}/\d{1,2}/\d{2,4})",
             "weight": 0.5, "bands": ["body3", "body4", "footer"]},
            {"field": "DATA", "label": "data_extenso",
             "pattern": r"(\d{1,2}\s*[º°]?\s+de\s+[a-zç]+\s+de\s+\d{4})",
             "weight": 0.5, "bands": ["body3", "body4", "footer"]},
        ],
        "directed": [
            {"field": "VALOR_ARBITRADO_JZ", "label": "jz_first_page", "page_offset": 0,
             "pattern": r"arbitrad[oa]s?[^\n]{0,80}?" + _MONEY,
             "weight": 0.75, "roles": list(_DESPACHO_ROLES)},
            {"field": "VALOR_ARBITRADO_DE", "label": "de_second_page", "page_offset": 1,
             "pattern": r"(?:autoriz[oa]|reserva|empenho|valor)[^\n]{0,80}?" + _MONEY,
             "weight": 0.75, "roles": list(_DE_ROLES)},
            {"field": "VALOR_ARBITRADO_CM", "label": "cm_conselho", "page_offset": 0,
             "pattern": r"conselho da magistratura[^\n]{0,120}?" + _MONEY,
             "weight": 0.7, "roles": ["certidao", "encaminhamento_conselho"]},
        ],
        "paragraphs": [
            {"field": "PERITO", "label": "perito_paragraph", "hints": ["perit", "cpf"],
             "pattern": r"perit[oa](?:\s+nomead[oa])?\s*:?\s*([^,;()\n]{4,80}?)\s*(?:,|-|\(|CPF)",
             "weight": 0.85},
            {"field": "PROMOVENTE", "label": "movido_por", "hints": ["em face"],
             "pattern": r"(?:movid[oa]|proposta|ajuizad[oa])\s+por\s+(.{3,120}?)\s*,?\s+em face d[eoa]s?\s+(.{3,120}?)(?=[,.;]|$)",
             "weight": 0.8, "group": 1},
            {"field": "PROMOVIDO", "label": "em_face_de", "hints": ["em face"],
             "pattern": r"(?:movid[oa]|proposta|ajuizad[oa])\s+por\s+(.{3,120}?)\s*,?\s+em face d[eoa]s?\s+(.{3,120}?)(?=[,.;]|$)",
             "weight": 0.8, "group": 2},
        ],
    }


@dataclass
class RuleSet:
    """Immutable-after-load collection of candidate rules."""

    patterns: List[PatternRule] = field(default_factory=list)
    directed: List[DirectedRule] = field(default_factory=list)
    paragraphs: List[ParagraphRule] = field(default_factory=list)

    @classmethod
    def default(cls) -> "RuleSet":
        return cls.from_mapping(_default_rule_data())

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "RuleSet":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Rule file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse rule file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Rule file {path} must be a YAML mapping")
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "RuleSet":
        unknown = set(data) - {"patterns", "directed", "paragraphs"}
        if unknown:
            raise ConfigError(f"Unknown rule sections: {', '.join(sorted(unknown))}")
        rules = cls()
        for i, item in enumerate(data.get("patterns") or []):
            where = f"patterns[{i}]"
            rules.patterns.append(
                PatternRule(
                    field=normalize_field_name(_require(item, "field", where)),
                    pattern=_compile(_require(item, "pattern", where), where),
                    weight=float(item.get("weight", 0.6)),
                    bands=_parse_bands(item.get("bands") or [], where),
                    roles=tuple(item.get("roles") or ()),
                    group=int(item.get("group", 1)),
                    label=item.get("label") or f"pattern{i}",
                )
            )
        for i, item in enumerate(data.get("directed") or []):
            where = f"directed[{i}]"
            rules.directed.append(
                DirectedRule(
                    field=normalize_field_name(_require(item, "field", where)),
                    pattern=_compile(_require(item, "pattern", where), where),
                    page_offset=int(item.get("page_offset", 0)),
                    weight=float(item.get("weight", 0.75)),
                    roles=tuple(item.get("roles") or ()),
                    group=int(item.get("group", 1)),
                    label=item.get("label") or f"directed{i}",
                )
            )
        for i, item in enumerate(data.get("paragraphs") or []):
            where = f"paragraphs[{i}]"
            rules.paragraphs.append(
                ParagraphRule(
                    field=normalize_field_name(_require(item, "field", where)),
                    hints=tuple(normalize_for_match(h) for h in item.get("hints") or ()),
                    pattern=_compile(_require(item, "pattern", where), where),
                    weight=float(item.get("weight", 0.85)),
                    roles=tuple(item.get("roles") or ()),
                    group=int(item.get("group", 1)),
                    label=item.get("label") or f"paragraph{i}",
                )
            )
        logger.debug(
            "Rule set: %d pattern, %d directed, %d paragraph rules",
            len(rules.patterns), len(rules.directed), len(rules.paragraphs),
        )
        return rules


def _require(item: Dict[str, Any], key: str, where: str) -> str:
    if not isinstance(item, dict) or not item.get(key):
        raise ConfigError(f"{where}: missing '{key}'")
    return str(item[key])


def _parse_bands(names: Iterable[str], where: str) -> Tuple[Band, ...]:
    out = []
    for n in names:
        band = _BAND_NAMES.get(str(n).lower())
        if band is None:
            raise ConfigError(f"{where}: unknown band '{n}'")
        out.append(band)
    return tuple(out)


def _scan_text(line_texts: Iterable[str]) -> str:
    return "\n".join(normalize_whitespace(collapse_spaced_letters(t)) for t in line_texts)


def _match_value(pattern: Pattern, text: str, group: int) -> Optional[str]:
    m = pattern.search(text)
    if not m:
        return None
    try:
        value = m.group(group)
    except IndexError:
        value = m.group(0)
    value = normalize_whitespace(value)
    return value or None


def _union(boxes: Sequence[BBox]) -> Optional[BBox]:
    if not boxes:
        return None
    return (
        min(b[0] for b in boxes),
        min(b[1] for b in boxes),
        max(b[2] for b in boxes),
        max(b[3] for b in boxes),
    )


def scan_bands(
    rules: Sequence[PatternRule],
    lines: Sequence[Line],
    role: str,
    scheme: BandScheme,
) -> List[FieldCandidate]:
    """First match of each rule in each (page, band) region, top of document first."""
    regions: "OrderedDict[Tuple[int, Band], List[Line]]" = OrderedDict()
    for line in sorted(lines, key=lambda l: (l.page, -l.ny1)):
        regions.setdefault((line.page, scheme.classify(line.ny0)), []).append(line)
    texts = {key: _scan_text(l.text for l in members) for key, members in regions.items()}

    out: List[FieldCandidate] = []
    for rule in rules:
        if not rule.applies(role):
            continue
        for (page, band), members in regions.items():
            if rule.bands and band not in rule.bands:
                continue
            value = _match_value(rule.pattern, texts[(page, band)], rule.group)
            if value is None:
                continue
            out.append(
                FieldCandidate(
                    name=rule.field,
                    raw_value=value,
                    method=f"pattern:{rule.label}@{band.value}",
                    weight=rule.weight,
                    page=page,
                    bbox=_union([l.bbox for l in members]),
                )
            )
    return out


def scan_directed(
    rules: Sequence[DirectedRule],
    lines_by_page: Dict[int, List[Line]],
    start_page: int,
    role: str,
) -> List[FieldCandidate]:
    """Rules bound to one page of the document; a value elsewhere does not count."""
    out: List[FieldCandidate] = []
    for rule in rules:
        if not rule.applies(role):
            continue
        page = start_page + rule.page_offset
        lines = lines_by_page.get(page) or []
        if not lines:
            continue
        value = _match_value(rule.pattern, _scan_text(l.text for l in lines), rule.group)
        if value is None:
            continue
        out.append(
            FieldCandidate(
                name=rule.field,
                raw_value=value,
                method=f"directed:{rule.label}",
                weight=rule.weight,
                page=page,
                bbox=_union([l.bbox for l in lines]),
            )
        )
    return out


def scan_paragraphs(
    rules: Sequence[ParagraphRule],
    paragraphs: Sequence[Paragraph],
    role: str,
) -> List[FieldCandidate]:
    """Apply each rule to the first paragraph whose text contains all of its hints."""
    normalized = [normalize_for_match(p.text) for p in paragraphs]
    out: List[FieldCandidate] = []
    for rule in rules:
        if not rule.applies(role):
            continue
        for p, norm in zip(paragraphs, normalized):
            if not all(h in norm for h in rule.hints):
                continue
            value = _match_value(rule.pattern, collapse_spaced_letters(p.text), rule.group)
            if value is not None:
                out.append(
                    FieldCandidate(
                        name=rule.field,
                        raw_value=value,
                        method=f"paragraph:{rule.label}",
                        weight=rule.weight,
                        page=p.page,
                        bbox=p.bbox,
                    )
                )
            break
    return out


# ---------------------------------------------------------------------------
# Certidão page inside a bundle
# ---------------------------------------------------------------------------

_MONEY_RE = re.compile(_MONEY, re.IGNORECASE)
_DATE_RE = re.compile(
    r"\d{1,2}/\d{1,2}/\d{2,4}|\d{1,2}\s*[º°]?\s+de\s+[a-zç]+\s+de\s+\d{4}",
    re.IGNORECASE,
)
_VALUE_HINTS = ("honor", "pagamento", "autorizad", "conselho")

CERTIDAO_VALUE_WEIGHT = 0.8
CERTIDAO_DATE_WEIGHT = 0.6


def _page_paragraphs(paragraphs: Sequence[Paragraph], page: int) -> List[Paragraph]:
    return sorted((p for p in paragraphs if p.page == page), key=lambda p: p.index)


def is_certidao_page(
    page_pars: Sequence[Paragraph],
    title_hints: Sequence[str],
    body_hints: Sequence[str],
    top_paragraphs: int = 3,
) -> bool:
    """A certidão title in the top paragraphs, plus a certifying phrase or a money value on the page."""
    if not page_pars:
        return False
    top = normalize_for_match(" ".join(p.text for p in page_pars[:top_paragraphs]))
    if not any(normalize_for_match(h) in top for h in title_hints):
        return False
    text = " ".join(p.text for p in page_pars)
    norm = normalize_for_match(text)
    return any(normalize_for_match(h) in norm for h in body_hints) or _MONEY_RE.search(text) is not None


def find_certidao_page(
    paragraphs: Sequence[Paragraph],
    first_page: int,
    last_page: int,
    title_hints: Sequence[str],
    body_hints: Sequence[str],
    top_paragraphs: int = 3,
) -> Optional[int]:
    """First page in [first_page, last_page] that reads as a certidão."""
    for page in range(first_page, last_page + 1):
        if is_certidao_page(_page_paragraphs(paragraphs, page), title_hints, body_hints, top_paragraphs):
            return page
    return None


def certidao_page_candidates(
    paragraphs: Sequence[Paragraph],
    page: int,
    date_hints: Sequence[str],
) -> List[FieldCandidate]:
    """
    VALOR_ARBITRADO_CM from the first money paragraph mentioning honorários,
    payment or authorization (else the first money paragraph), and DATA_CM
    from the last dated paragraph carrying a date hint (else the last dated one).
    """
    page_pars = _page_paragraphs(paragraphs, page)
    out: List[FieldCandidate] = []

    value_par = None
    for p in page_pars:
        if not _MONEY_RE.search(p.text):
            continue
        if value_par is None:
            value_par = p
        if any(h in normalize_for_match(p.text) for h in _VALUE_HINTS):
            value_par = p
            break
    if value_par is not None:
        out.append(
            FieldCandidate(
                name="VALOR_ARBITRADO_CM",
                raw_value=_MONEY_RE.search(value_par.text).group(1),
                method="certidao_page:value",
                weight=CERTIDAO_VALUE_WEIGHT,
                page=page,
                bbox=value_par.bbox,
            )
        )

    hinted = fallback = None
    for p in page_pars:
        m = _DATE_RE.search(p.text)
        if m is None:
            continue
        fallback = (p, m.group(0))
        norm = normalize_for_match(p.text)
        if any(normalize_for_match(h) in norm for h in date_hints):
            hinted = (p, m.group(0))
    picked = hinted or fallback
    if picked is not None:
        p, raw = picked
        out.append(
            FieldCandidate(
                name="DATA_CM",
                raw_value=raw,
                method="certidao_page:date",
                weight=CERTIDAO_DATE_WEIGHT,
                page=page,
                bbox=p.bbox,
            )
        )
    logger.debug("Certidão page %d: %s", page, [(c.name, c.raw_value) for c in out])
    return out
