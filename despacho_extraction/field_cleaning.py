"""
Field names, value cleaning, and per-field shape rules.
Cleaning functions return a FieldValue or None when the raw text is unusable;
the caller decides whether a rejection matters.
"""

import logging
import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Optional, Tuple

from .text_utils import (
    collapse_spaced_letters,
    digits_only,
    normalize_for_match,
    normalize_whitespace,
    remove_diacritics,
)
from .types import DateValue, FieldValue, IdentifierValue, MoneyValue, TextValue

logger = logging.getLogger(__name__)

# Keys are upper-case ASCII with every non-alphanumeric removed.
FIELD_SYNONYMS: Dict[str, str] = {
    "PROCESSOJUDICIAL": "PROCESSO_JUDICIAL",
    "PROCESSOADMINISTRATIVO": "PROCESSO_ADMINISTRATIVO",
    "PROMOVENTE": "PROMOVENTE",
    "PROMOVIDO": "PROMOVIDO",
    "PERITO": "PERITO",
    "CPFCNPJ": "CPF_PERITO",
    "CPF": "CPF_PERITO",
    "CPFPERITO": "CPF_PERITO",
    "PROFISSAO": "ESPECIALIDADE",
    "ESPECIALIDADE": "ESPECIALIDADE",
    "ESPECIEDEPERICIA": "ESPECIE_DA_PERICIA",
    "ESPECIEDAPERICIA": "ESPECIE_DA_PERICIA",
    "JUIZO": "VARA",
    "VARA": "VARA",
    "COMARCA": "COMARCA",
    "VALORARBITRADOJZ": "VALOR_ARBITRADO_JZ",
    "VALORARBITRADODE": "VALOR_ARBITRADO_DE",
    "VALORARBITRADOCM": "VALOR_ARBITRADO_CM",
    "DATADAAUTORIZACAODADESPESA": "DATA",
    "DATA": "DATA",
    "ADIANTAMENTO": "ADIANTAMENTO",
    "VALORTABELADOANEXOITABELAI": "VALOR_TABELADO_ANEXO_I",
    "VALORTABELADOANEXOI": "VALOR_TABELADO_ANEXO_I",
    "ASSINANTE": "ASSINANTE",
}

MONEY_FIELDS = frozenset({
    "VALOR_ARBITRADO_JZ",
    "VALOR_ARBITRADO_DE",
    "VALOR_ARBITRADO_CM",
    "VALOR_TABELADO_ANEXO_I",
    "ADIANTAMENTO",
})
DATE_FIELDS = frozenset({"DATA", "DATA_ASSINATURA", "DATA_CM"})
PERSON_FIELDS = frozenset({"PERITO", "PROMOVENTE", "PROMOVIDO", "ASSINANTE"})

FIELD_KINDS: Dict[str, str] = {
    **{f: "money" for f in MONEY_FIELDS},
    **{f: "date" for f in DATE_FIELDS},
    **{f: "person" for f in PERSON_FIELDS},
    "CPF_PERITO": "cpf",
    "PROCESSO_JUDICIAL": "cnj",
    "PROCESSO_ADMINISTRATIVO": "sei",
}

_NAME_KEY_RE = re.compile(r"[^A-Z0-9]")


def normalize_field_name(name: str) -> str:
    """Canonical field key: synonym table first, else upper-case with underscores."""
    ascii_upper = remove_diacritics(name or "").upper()
    key = _NAME_KEY_RE.sub("", ascii_upper)
    if key in FIELD_SYNONYMS:
        return FIELD_SYNONYMS[key]
    return re.sub(r"\s+", "_", normalize_whitespace(ascii_upper))


def field_kind(name: str) -> str:
    return FIELD_KINDS.get(name, "text")


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

_CURRENCY_NUM_RE = re.compile(r"R\$\s*(\d[\d.,]*\d|\d)")
_NUM_RE = re.compile(r"\d[\d.,]*\d|\d")
_THOUSANDS_ONLY_RE = re.compile(r"^\d{1,3}(?:\.\d{3})+$")
_CENT = Decimal("0.01")


def parse_money(raw: Optional[str]) -> Optional[Decimal]:
    """
    pt-BR or plain decimal amount from free text.
    Integers above 1000 without any separator are read as cents.
    """
    if not raw:
        return None
    m = _CURRENCY_NUM_RE.search(raw)
    token = m.group(1) if m else None
    if token is None:
        m = _NUM_RE.search(raw)
        token = m.group(0) if m else None
    if token is None:
        return None
    divide = False
    if "," in token:
        s = token.replace(".", "").replace(",", ".")
    elif "." in token:
        s = token.replace(".", "") if _THOUSANDS_ONLY_RE.match(token) else token
    else:
        s = token
        divide = True
    if s.count(".") > 1:
        return None
    try:
        amount = Decimal(s)
    except InvalidOperation:
        return None
    if divide and amount > 1000:
        amount = amount / 100
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def clean_money(raw: Optional[str]) -> Optional[MoneyValue]:
    amount = parse_money(raw)
    if amount is None or amount <= 0:
        return None
    return MoneyValue(amount)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

_CNJ_RE = re.compile(r"\d{7}-\d{2}\.\d{4}\.\d\.\d{2}\.\d{4}")
_SEI_RE = re.compile(r"\d{6,7}-\d{2}\.\d{4}\.\d\.\d{2}(?:\.\d{4})?")


def clean_cpf(raw: Optional[str]) -> Optional[IdentifierValue]:
    digits = digits_only(raw)
    if len(digits) != 11:
        return None
    return IdentifierValue(digits, f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}")


def clean_cnj(raw: Optional[str]) -> Optional[IdentifierValue]:
    compact = re.sub(r"\s+", "", raw or "")
    m = _CNJ_RE.search(compact)
    if m:
        return IdentifierValue(digits_only(m.group(0)), m.group(0))
    digits = digits_only(compact)
    if len(digits) == 20:
        d = digits
        return IdentifierValue(d, f"{d[:7]}-{d[7:9]}.{d[9:13]}.{d[13]}.{d[14:16]}.{d[16:]}")
    return None


def clean_sei_process(raw: Optional[str]) -> Optional[IdentifierValue]:
    compact = re.sub(r"\s+", "", raw or "")
    m = _SEI_RE.search(compact)
    if not m:
        return None
    return IdentifierValue(digits_only(m.group(0)), m.group(0))


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

MONTHS: Dict[str, int] = {
    "janeiro": 1, "fevereiro": 2, "marco": 3, "abril": 4, "maio": 5, "junho": 6,
    "julho": 7, "agosto": 8, "setembro": 9, "outubro": 10, "novembro": 11, "dezembro": 12,
}

_DATE_NUM_RE = re.compile(r"(?<!\d)(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4}|\d{2})(?!\d)")
_DATE_EXT_RE = re.compile(r"(?<!\d)(\d{1,2})\s*[º°]?\s+de\s+([A-Za-zçÇ]+)\s+de\s+(\d{4})(?!\d)", re.IGNORECASE)
MIN_YEAR = 1990


def _expand_year(text: str) -> int:
    year = int(text)
    if len(text) == 2:
        # Two-digit years pivot at 29: 23 -> 2023, 98 -> 1998.
        year += 2000 if year <= 29 else 1900
    return year


def _make_date(year: int, month: int, day: int, today: date) -> Optional[date]:
    if year < MIN_YEAR or year > today.year + 1:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def find_dates(raw: Optional[str], today: Optional[date] = None) -> Tuple[Tuple[int, date], ...]:
    """All valid dates in text as (offset, date), in text order."""
    if not raw:
        return ()
    today = today or date.today()
    found = []
    for m in _DATE_NUM_RE.finditer(raw):
        d = _make_date(_expand_year(m.group(3)), int(m.group(2)), int(m.group(1)), today)
        if d is not None:
            found.append((m.start(), d))
    for m in _DATE_EXT_RE.finditer(raw):
        month = MONTHS.get(remove_diacritics(m.group(2)).lower(), 0)
        if not month:
            continue
        d = _make_date(int(m.group(3)), month, int(m.group(1)), today)
        if d is not None:
            found.append((m.start(), d))
    found.sort(key=lambda x: x[0])
    return tuple(found)


def clean_date(raw: Optional[str], today: Optional[date] = None) -> Optional[DateValue]:
    """First valid numeric or extenso date in the text, as ISO."""
    found = find_dates(raw, today)
    return DateValue(found[0][1]) if found else None


# ---------------------------------------------------------------------------
# Text / names
# ---------------------------------------------------------------------------

_PERITO_WORD_RE = re.compile(r"(?i)\bperit[oa]\b")
_EMAIL_RE = re.compile(r"\s*[-–]?\s*[^\s@]*@[^\s,;]+")
_NAME_CHARS_RE = re.compile(r"[^A-Za-zÀ-ÖØ-öø-ÿ\s'\-]+")
_CAMEL_RE = re.compile(r"(?<=[a-zà-öø-ÿ])(?=[A-ZÀ-ÖØ-Þ])")
_INSTITUTIONAL = ("tribunal", "poder judiciario", "diretoria", "secretaria", "cartorio", "serventia")


def clean_text(raw: Optional[str]) -> Optional[TextValue]:
    t = normalize_whitespace(raw).strip(" .,;:-–")
    return TextValue(t) if t else None


def clean_person_name(raw: Optional[str]) -> Optional[TextValue]:
    if not raw:
        return None
    v = collapse_spaced_letters(raw)
    v = _PERITO_WORD_RE.sub("", v)
    v = _EMAIL_RE.sub("", v)
    v = _NAME_CHARS_RE.sub(" ", v)
    v = _CAMEL_RE.sub(" ", v)
    v = normalize_whitespace(v).strip(" -'")
    if len(v) < 4:
        return None
    return TextValue(v)


def looks_institutional(text: str) -> bool:
    norm = normalize_for_match(text)
    return any(k in norm for k in _INSTITUTIONAL)


def clean_value(name: str, raw: Optional[str], today: Optional[date] = None) -> Optional[FieldValue]:
    """Dispatch on the field's kind; None means the raw value was rejected."""
    kind = field_kind(name)
    if kind == "money":
        return clean_money(raw)
    if kind == "date":
        return clean_date(raw, today)
    if kind == "cpf":
        return clean_cpf(raw)
    if kind == "cnj":
        return clean_cnj(raw)
    if kind == "sei":
        return clean_sei_process(raw)
    if kind == "person":
        return clean_person_name(raw)
    value = clean_text(raw)
    if value is None:
        logger.debug("Empty value for %s: %r", name, raw)
    return value


# (min length, max length) of the cleaned text for text-like fields.
_LENGTH_RULES: Dict[str, Tuple[int, int]] = {
    "PERITO": (4, 120),
    "PROMOVENTE": (3, 200),
    "PROMOVIDO": (3, 200),
    "ASSINANTE": (4, 120),
    "VARA": (3, 160),
    "COMARCA": (3, 80),
    "ESPECIALIDADE": (3, 120),
    "ESPECIE_DA_PERICIA": (3, 200),
}
_DEFAULT_LENGTH = (1, 300)
_MAX_MONEY = Decimal("1000000")


def validate_value(name: str, value: FieldValue) -> bool:
    """Per-field shape rule applied after cleaning."""
    if isinstance(value, MoneyValue):
        return Decimal("0") < value.amount < _MAX_MONEY
    if isinstance(value, (DateValue, IdentifierValue)):
        return True
    if not isinstance(value, TextValue):
        return False
    lo, hi = _LENGTH_RULES.get(name, _DEFAULT_LENGTH)
    if not lo <= len(value.text) <= hi:
        return False
    if name in PERSON_FIELDS or name in ("COMARCA", "VARA", "ESPECIALIDADE"):
        if not re.search(r"[A-Za-zÀ-ÿ]{2,}", value.text):
            return False
    if name in ("PERITO", "ASSINANTE") and looks_institutional(value.text):
        return False
    return True
