"""
Reference catalogs: perito directory, honorarios value table, laudo content hashes.
Each is loaded once per run and treated as read-only afterwards.
A missing file yields an empty catalog; a file without its mandatory columns is an error.
"""

import csv
import json
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from rapidfuzz import fuzz, process

from .errors import CatalogError
from .text_utils import content_hash, digits_only, normalize_whitespace, remove_diacritics

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CPF_CONFIDENCE = 0.9
NAME_CONFIDENCE = 0.75
AMBIGUOUS_NAME_CONFIDENCE = 0.6
FUZZY_NAME_CONFIDENCE = 0.65
FUZZY_NAME_MIN_SCORE = 92
ALIAS_CONFIDENCE = 0.9
VALUE_MATCH_CONFIDENCE = 0.75

_NAME_COLUMNS = ("PERITO", "NOME", "NOME_PERITO")
_CPF_COLUMNS = ("CPF/CNPJ", "CPF", "DOCUMENTO")
_ESPECIALIDADE_COLUMNS = ("ESPECIALIDADE", "PROFISSAO", "PROFISSÃO")
_REGISTRY_TAIL_RE = re.compile(r"(?i)\b(CPF|CNPJ|PIS|INSS|RG|CRM|CRP|CRO|COREN|CREFITO)\b.*$")


def _read_rows(path: Path) -> Tuple[List[str], List[Dict[str, str]]]:
    """Header (upper-cased) and rows of a UTF-8 CSV file; the BOM is tolerated."""
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        reader = csv.reader(f)
        try:
            header = [h.strip().upper() for h in next(reader)]
        except StopIteration:
            return [], []
        rows = []
        for values in reader:
            if not any(v.strip() for v in values):
                continue
            rows.append({h: v.strip() for h, v in zip(header, values)})
    return header, rows


def _pick(row: Dict[str, str], keys: Sequence[str]) -> str:
    for k in keys:
        v = row.get(k, "")
        if v:
            return v
    return ""


def name_key(name: str) -> str:
    n = remove_diacritics(name or "").upper()
    n = re.sub(r"[^A-Z0-9 ]+", " ", n)
    return normalize_whitespace(n)


def keyword_key(text: str) -> str:
    t = remove_diacritics(text or "").lower()
    t = re.sub(r"[^a-z0-9]+", " ", t)
    return normalize_whitespace(t)


def _looks_like_name(name: str) -> bool:
    if "@" in name or len(name) < 5:
        return False
    if re.search(r"(?i)interessad[oa]|sighop", name):
        return False
    return bool(re.search(r"[A-Za-zÀ-ÿ]", name))


def _clean_especialidade(raw: str) -> str:
    if not raw or "@" in raw or re.search(r"(?i)interessad[oa]|sighop", raw):
        return ""
    v = _REGISTRY_TAIL_RE.sub("", raw.strip())
    return normalize_whitespace(v[:120])


def _missing_file(path: Path, what: str) -> bool:
    if path.exists():
        return False
    logger.warning("%s not found at %s; continuing without it", what, path)
    return True


# ---------------------------------------------------------------------------
# Perito directory
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PeritoInfo:
    name: str
    cpf: str = ""
    especialidade: str = ""
    source: str = ""
    ambiguous: bool = False  # same name listed with different specialties


@dataclass(frozen=True)
class CatalogMatch:
    info: PeritoInfo
    confidence: float
    method: str


def _best_info(items: Iterable[PeritoInfo]) -> PeritoInfo:
    return sorted(items, key=lambda p: (not p.especialidade, not p.cpf))[0]


class PeritoCatalog:
    """Name / CPF directory of court experts."""

    def __init__(self, entries: Iterable[PeritoInfo] = ()) -> None:
        by_cpf: Dict[str, PeritoInfo] = {}
        by_name: Dict[str, List[PeritoInfo]] = {}
        entries = list(entries)
        for info in entries:
            if info.cpf:
                existing = by_cpf.get(info.cpf)
                by_cpf[info.cpf] = _best_info([existing, info]) if existing else info
            key = name_key(info.name)
            if key:
                by_name.setdefault(key, []).append(info)
        for key, items in by_name.items():
            specialties = {p.especialidade.lower() for p in items if p.especialidade}
            if len(specialties) > 1:
                by_name[key] = [
                    PeritoInfo(p.name, p.cpf, p.especialidade, p.source, ambiguous=True) for p in items
                ]
        self._by_cpf = by_cpf
        self._by_name = by_name
        self._names = list(by_name)
        self._count = len(entries)

    def __len__(self) -> int:
        return self._count

    @classmethod
    def from_csv(cls, path: PathLike) -> "PeritoCatalog":
        path = Path(path)
        if _missing_file(path, "Perito catalog"):
            return cls()
        header, rows = _read_rows(path)
        if not any(c in header for c in _NAME_COLUMNS + _CPF_COLUMNS):
            raise CatalogError(f"Perito catalog {path} needs a name or CPF column, found {header}")
        entries = []
        for row in rows:
            name = _pick(row, _NAME_COLUMNS)
            cpf = digits_only(_pick(row, _CPF_COLUMNS))
            if not name and not cpf:
                continue
            if name and not _looks_like_name(name):
                continue
            entries.append(
                PeritoInfo(
                    name=normalize_whitespace(name.strip(",;.- ")),
                    cpf=cpf,
                    especialidade=_clean_especialidade(_pick(row, _ESPECIALIDADE_COLUMNS)),
                    source=path.name,
                )
            )
        catalog = cls(entries)
        logger.info("Loaded perito catalog %s: %d entries", path.name, len(entries))
        return catalog

    def resolve(self, name: Optional[str] = None, cpf: Optional[str] = None) -> Optional[CatalogMatch]:
        """CPF first, then exact normalized name, then a close fuzzy name."""
        digits = digits_only(cpf)
        if digits and digits in self._by_cpf:
            return CatalogMatch(self._by_cpf[digits], CPF_CONFIDENCE, "cpf")
        key = name_key(name or "")
        if not key:
            return None
        items = self._by_name.get(key)
        if items:
            best = _best_info(items)
            conf = AMBIGUOUS_NAME_CONFIDENCE if best.ambiguous else NAME_CONFIDENCE
            return CatalogMatch(best, conf, "name")
        if not self._names:
            return None
        hit = process.extractOne(key, self._names, scorer=fuzz.token_sort_ratio, score_cutoff=FUZZY_NAME_MIN_SCORE)
        if hit is None:
            return None
        best = _best_info(self._by_name[hit[0]])
        logger.debug("Fuzzy perito match %r -> %r (%.1f)", key, hit[0], hit[1])
        return CatalogMatch(best, FUZZY_NAME_CONFIDENCE, "fuzzy_name")


# ---------------------------------------------------------------------------
# Honorarios table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HonorariosEntry:
    area: str
    descricao: str
    entry_id: str
    valor: Decimal


@dataclass(frozen=True)
class HonorariosMatch:
    entry: HonorariosEntry
    confidence: float
    method: str


@dataclass(frozen=True)
class HonorariosAlias:
    target_id: str
    keywords: Tuple[str, ...]


# Keyword fragments (on keyword_key text) for the table's areas.
_AREA_FALLBACK: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("CIÊNCIAS CONTÁBEIS", ("grafotec", "grafoscop", "grafocop", "contab", "contador")),
    ("ENGENHARIA E ARQUITETURA", ("engenh", "arquitet", "civil", "insalubr", "periculos")),
    ("MEDICINA / ODONTOLOGIA", ("odont", "medic", "psiquiat")),
    ("SERVIÇO SOCIAL", ("assistente social", "servico social", "estudo social")),
    ("PSICOLOGIA", ("psicol", "entrevistadora forense")),
)


def map_area_fallback(text: str) -> str:
    """Table area for a profession / specialty text, or '' when nothing fits."""
    norm = keyword_key(text)
    if not norm:
        return ""
    for area, fragments in _AREA_FALLBACK:
        if any(f in norm for f in fragments):
            return area
    return ""


def _parse_table_value(raw: str) -> Optional[Decimal]:
    cleaned = raw.strip().replace("R$", "").strip()
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


class HonorariosTable:
    """Fee table rows (area, description, id, value) with keyword aliases."""

    def __init__(
        self,
        entries: Iterable[HonorariosEntry] = (),
        aliases: Iterable[HonorariosAlias] = (),
        area_map: Optional[Dict[str, Sequence[str]]] = None,
        tolerance: float = 0.15,
    ) -> None:
        self.entries: Tuple[HonorariosEntry, ...] = tuple(entries)
        self.aliases: Tuple[HonorariosAlias, ...] = tuple(aliases)
        self.area_map = {area: [keyword_key(k) for k in kws if keyword_key(k)] for area, kws in (area_map or {}).items()}
        self.tolerance = tolerance if tolerance > 0 else 0.15
        self._by_id = {e.entry_id: e for e in self.entries if e.entry_id}

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_csv(
        cls,
        path: PathLike,
        aliases_path: Optional[PathLike] = None,
        area_map: Optional[Dict[str, Sequence[str]]] = None,
        tolerance: float = 0.15,
    ) -> "HonorariosTable":
        path = Path(path)
        entries: List[HonorariosEntry] = []
        if not _missing_file(path, "Honorarios table"):
            header, rows = _read_rows(path)
            missing = [c for c in ("DESCRICAO", "VALOR") if c not in header]
            if missing:
                raise CatalogError(f"Honorarios table {path} is missing columns: {', '.join(missing)}")
            for row in rows:
                desc = row.get("DESCRICAO", "")
                value = _parse_table_value(row.get("VALOR", ""))
                if not desc or value is None:
                    continue
                entries.append(HonorariosEntry(row.get("AREA", ""), desc, row.get("ID", ""), value))
            logger.info("Loaded honorarios table %s: %d entries", path.name, len(entries))
        aliases = load_aliases(aliases_path) if aliases_path else []
        return cls(entries, aliases, area_map, tolerance)

    def match(self, especialidade: str, valor: Optional[Decimal] = None) -> Optional[HonorariosMatch]:
        """Alias keyword hit, else the entry of the mapped area closest to `valor`."""
        if not especialidade or not self.entries:
            return None
        norm = keyword_key(especialidade)
        for alias in self.aliases:
            if any(k in norm for k in alias.keywords) and alias.target_id in self._by_id:
                return HonorariosMatch(self._by_id[alias.target_id], ALIAS_CONFIDENCE, "alias")
        area = self.map_area(especialidade)
        if not area or valor is None:
            return None
        candidates = [e for e in self.entries if e.area.lower() == area.lower()]
        if not candidates:
            return None
        best = min(candidates, key=lambda e: abs(e.valor - valor))
        diff = abs(best.valor - valor)
        pct = diff / valor if valor else Decimal(1)
        if pct > Decimal(str(self.tolerance)):
            logger.debug("Honorarios: closest %s in %s off by %.1f%%", best.valor, area, float(pct) * 100)
            return None
        return HonorariosMatch(best, VALUE_MATCH_CONFIDENCE, "area_value")

    def map_area(self, especialidade: str) -> str:
        norm = keyword_key(especialidade)
        for area, keywords in self.area_map.items():
            if any(k in norm for k in keywords):
                return area
        return map_area_fallback(especialidade)


def load_aliases(path: PathLike) -> List[HonorariosAlias]:
    """JSON list of {"targetId": ..., "keywords": [...]} objects."""
    path = Path(path)
    if _missing_file(path, "Honorarios aliases"):
        return []
    try:
        items = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CatalogError(f"Invalid aliases JSON {path}: {e}") from e
    if not isinstance(items, list):
        raise CatalogError(f"Aliases file {path} must hold a JSON list")
    aliases = []
    for item in items:
        if not isinstance(item, dict):
            continue
        target = str(item.get("targetId") or item.get("target_id") or "").strip()
        keywords = tuple(k for k in (keyword_key(str(x)) for x in item.get("keywords") or []) if k)
        if target and keywords:
            aliases.append(HonorariosAlias(target, keywords))
    return aliases


# ---------------------------------------------------------------------------
# Laudo hash database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LaudoHashEntry:
    hash_sha1: str
    especie: str = ""
    natureza: str = ""
    autor: str = ""
    arquivo: str = ""
    quesitos: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "hash_sha1": self.hash_sha1,
            "especie": self.especie,
            "natureza": self.natureza,
            "autor": self.autor,
            "arquivo": self.arquivo,
            "quesitos": self.quesitos,
        }


@dataclass(frozen=True)
class LaudoHashDb:
    """Known laudo texts keyed by SHA1 of their hash-normalized content."""

    entries: Dict[str, LaudoHashEntry] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_csv(cls, path: PathLike) -> "LaudoHashDb":
        path = Path(path)
        if _missing_file(path, "Laudo hash database"):
            return cls()
        header, rows = _read_rows(path)
        if "HASH_SHA1" not in header:
            raise CatalogError(f"Laudo hash database {path} needs a hash_sha1 column")
        entries = {}
        for row in rows:
            digest = row.get("HASH_SHA1", "").lower()
            if not digest:
                continue
            entries[digest] = LaudoHashEntry(
                hash_sha1=digest,
                especie=row.get("ESPECIE", ""),
                natureza=row.get("NATUREZA", ""),
                autor=row.get("AUTOR", ""),
                arquivo=row.get("ARQUIVO", ""),
                quesitos=row.get("QUESITOS", ""),
            )
        logger.info("Loaded laudo hash database %s: %d entries", path.name, len(entries))
        return cls(entries)

    def get(self, digest: str) -> Optional[LaudoHashEntry]:
        return self.entries.get((digest or "").lower())

    def lookup(self, text: str) -> Optional[LaudoHashEntry]:
        digest = content_hash(text)
        return self.get(digest) if digest else None


@dataclass(frozen=True)
class Catalogs:
    """Bundle handed to the merge stage; any member may be empty."""

    peritos: PeritoCatalog = field(default_factory=PeritoCatalog)
    honorarios: HonorariosTable = field(default_factory=HonorariosTable)
    laudo_hashes: LaudoHashDb = field(default_factory=LaudoHashDb)


def load_catalogs(
    perito_path: Optional[PathLike] = None,
    honorarios_path: Optional[PathLike] = None,
    aliases_path: Optional[PathLike] = None,
    laudo_hash_path: Optional[PathLike] = None,
    tolerance: float = 0.15,
) -> Catalogs:
    return Catalogs(
        peritos=PeritoCatalog.from_csv(perito_path) if perito_path else PeritoCatalog(),
        honorarios=(
            HonorariosTable.from_csv(honorarios_path, aliases_path, tolerance=tolerance)
            if honorarios_path else HonorariosTable(tolerance=tolerance)
        ),
        laudo_hashes=LaudoHashDb.from_csv(laudo_hash_path) if laudo_hash_path else LaudoHashDb(),
    )
