"""
Text normalizers shared by reconstruction, matching, and cleaning.
All functions are pure and accept empty / None-ish input.
"""

import hashlib
import re
import unicodedata
from typing import List, Optional

_WS_RE = re.compile(r"\s+")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]+")
_MATCH_STRIP_RE = re.compile(r"[^a-z0-9\s/\-\.]+")

# Single characters that belong to a letter-spaced run ("R $ 1 . 0 0 0", "n º").
_JOIN_SYMBOLS = frozenset("$/-–.,ªº°")

# Systematic no-space artifacts left by glyph-positioned text.
_MISSING_SPACE_RULES = [
    # "Processo:123" / "Perito:Fulano"
    (re.compile(r"([A-Za-zÀ-ÿ]):(?=[A-Za-zÀ-ÿ0-9])"), r"\1: "),
    # "valor,sendo" / "pagamento;após" (digits keep their separators: 1.234,56)
    (re.compile(r"([A-Za-zÀ-ÿ])([,;])(?=[A-Za-zÀ-ÿ])"), r"\1\2 "),
    # "R$1.000,00"
    (re.compile(r"R\$(?=\d)"), "R$ "),
    # "nº123" / "n°0001"
    (re.compile(r"\b([Nn][º°])(?=\d)"), r"\1 "),
    # "perícia.O perito" (sentence glued to the next one)
    (re.compile(r"([a-zà-ÿ]{3,})\.(?=[A-ZÀ-Ý][a-zà-ÿ])"), r"\1. "),
    # "requisitadoPelo" (lower-case run followed by capitalized word)
    (re.compile(r"([a-zà-ÿ]{3,})(?=[A-ZÀ-Ý][a-zà-ÿ]{2,})"), r"\1 "),
]


def normalize_whitespace(text: Optional[str]) -> str:
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()


def remove_diacritics(text: Optional[str]) -> str:
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return unicodedata.normalize("NFC", stripped)


def _is_join_token(token: str) -> bool:
    if len(token) != 1:
        return False
    return token.isalnum() or token in _JOIN_SYMBOLS


def collapse_spaced_letters(text: Optional[str]) -> str:
    """Join runs of single-character tokens: 'D e s p a c h o' -> 'Despacho'."""
    if not text or not text.strip():
        return ""
    tokens = [t for t in _WS_RE.split(text) if t]
    output: List[str] = []
    buffer: List[str] = []
    for tok in tokens:
        if _is_join_token(tok):
            buffer.append(tok)
            continue
        if buffer:
            output.append("".join(buffer))
            buffer = []
        output.append(tok)
    if buffer:
        output.append("".join(buffer))
    return " ".join(output).strip()


def collapse_doubled_chars(token: Optional[str]) -> str:
    """'DDEESSPPAACCHHOO' -> 'DESPACHO' when most character pairs are doubled."""
    if not token or not token.strip():
        return ""
    n = len(token)
    if n < 4 or n % 2:
        return token
    pairs = n // 2
    equal = sum(1 for i in range(0, n - 1, 2) if token[i] == token[i + 1])
    if equal < max(3, -(-pairs * 7 // 10)):
        return token
    return token[::2]


def despace_if_needed(text: Optional[str]) -> str:
    """Remove all whitespace when most tokens are single characters."""
    if not text:
        return ""
    tokens = [t for t in _WS_RE.split(text) if t]
    if not tokens:
        return ""
    single = sum(1 for t in tokens if len(t) == 1)
    if single / len(tokens) > 0.5:
        return "".join(tokens)
    return text


def fix_missing_spaces(text: Optional[str]) -> str:
    if not text:
        return ""
    out = text
    for pattern, repl in _MISSING_SPACE_RULES:
        out = pattern.sub(repl, out)
    return normalize_whitespace(out)


def normalize_for_match(text: Optional[str]) -> str:
    """Lowercase ASCII form for keyword comparisons."""
    if not text or not text.strip():
        return ""
    t = remove_diacritics(collapse_spaced_letters(text)).lower()
    t = _MATCH_STRIP_RE.sub(" ", t)
    return normalize_whitespace(t)


def normalize_for_hash(text: Optional[str]) -> str:
    if not text or not text.strip():
        return ""
    t = _CONTROL_RE.sub(" ", text.lower())
    return normalize_whitespace(t)


def sha1_hex(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def content_hash(text: Optional[str]) -> str:
    """SHA1 digest of hash-normalized text; empty string for empty text."""
    norm = normalize_for_hash(text)
    return sha1_hex(norm) if norm else ""


def fold_char(c: str) -> str:
    """Case and accent fold that maps one character to exactly one character."""
    if c.isspace():
        return " "
    base = unicodedata.normalize("NFD", c)[0]
    low = base.lower()
    return low[0] if low else base


def fold_text(text: str) -> str:
    """Length-preserving fold; offsets in the result map 1:1 to the input."""
    return "".join(fold_char(c) for c in text)


def fold_phrase(text: str) -> str:
    """Fold plus whitespace collapse, used for literal anchors."""
    return normalize_whitespace(fold_text(text))


def digits_only(text: Optional[str]) -> str:
    if not text:
        return ""
    return "".join(c for c in text if c.isdigit())
