"""
Shared data types for the despacho extraction pipeline.
Immutable where the pipeline treats them as read-only, serializable for debug output.
Coordinates follow PDF user space: Y grows upward, so a larger ny0 is nearer the top.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

BBox = Tuple[float, float, float, float]


@dataclass(frozen=True)
class Token:
    """Positioned text run as supplied by the PDF decoding collaborator."""

    text: str
    x0: float
    y0: float
    x1: float
    y1: float
    nx0: float = 0.0
    ny0: float = 0.0
    nx1: float = 0.0
    ny1: float = 0.0
    page: int = 1
    font: str = ""
    size: float = 0.0
    bold: bool = False
    italic: bool = False
    underline: bool = False
    render_mode: int = 0
    char_spacing: float = 0.0
    word_spacing: float = 0.0

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0

    @property
    def char_width(self) -> float:
        n = len(self.text)
        return self.width / n if n else 0.0


@dataclass
class Line:
    """One reconstructed text line on a page."""

    page: int
    tokens: List[Token]
    text: str
    x0: float
    y0: float
    x1: float
    y1: float
    bbox: BBox  # normalized (nx0, ny0, nx1, ny1)
    font: str = ""
    font_size: float = 0.0

    @property
    def ny0(self) -> float:
        return self.bbox[1]

    @property
    def ny1(self) -> float:
        return self.bbox[3]

    @property
    def height(self) -> float:
        return self.y1 - self.y0


@dataclass
class Paragraph:
    """Vertical cluster of lines within one page."""

    page: int
    index: int
    lines: List[Line]
    text: str
    bbox: Optional[BBox]
    tokens: List[str] = field(default_factory=list)

    @property
    def ny0(self) -> float:
        return self.bbox[1] if self.bbox else 0.0

    @property
    def ny1(self) -> float:
        return self.bbox[3] if self.bbox else 0.0


class Band(str, Enum):
    """Vertical page region, ordered top to bottom."""

    HEADER = "header"
    SUBHEADER = "subheader"
    BODY1 = "body1"
    BODY2 = "body2"
    BODY3 = "body3"
    BODY4 = "body4"
    FOOTER = "footer"

    @property
    def rank(self) -> int:
        """0 for header; larger means lower on the page."""
        return BAND_ORDER.index(self)


BAND_ORDER: Tuple[Band, ...] = (
    Band.HEADER,
    Band.SUBHEADER,
    Band.BODY1,
    Band.BODY2,
    Band.BODY3,
    Band.BODY4,
    Band.FOOTER,
)


@dataclass
class BandSummary:
    """Statistics over the lines falling in one band."""

    band: Band
    count: int
    bbox: BBox
    bbox_p25: BBox
    bbox_p75: BBox
    font: str
    font_size: float
    samples: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Bookmark:
    """Outline entry; children are nested entries."""

    title: str
    page: int
    level: int = 0
    children: Tuple["Bookmark", ...] = ()


class BoundaryType(str, Enum):
    BOOKMARK = "bookmark"
    ANEXO = "anexo"
    AUTOMATIC = "automatic"


@dataclass(frozen=True)
class DocumentBoundary:
    """Contiguous page range forming one logical document."""

    start_page: int
    end_page: int
    raw_title: str = ""
    sanitized_title: str = ""
    detected_type: BoundaryType = BoundaryType.BOOKMARK
    level: int = 0
    parent: Optional["DocumentBoundary"] = None

    @property
    def page_count(self) -> int:
        return self.end_page - self.start_page + 1

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "start_page": self.start_page,
            "end_page": self.end_page,
            "title": self.sanitized_title,
            "raw_title": self.raw_title,
            "type": self.detected_type.value,
        }
        if self.parent is not None:
            out["parent"] = {
                "start_page": self.parent.start_page,
                "end_page": self.parent.end_page,
                "title": self.parent.sanitized_title,
            }
        return out


# ---------------------------------------------------------------------------
# Field values: closed set of variants instead of loose string bags.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextValue:
    text: str

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class MoneyValue:
    amount: Decimal

    def __str__(self) -> str:
        return f"{self.amount:.2f}"


@dataclass(frozen=True)
class DateValue:
    value: date

    def __str__(self) -> str:
        return self.value.isoformat()


@dataclass(frozen=True)
class IdentifierValue:
    digits: str
    formatted: str

    def __str__(self) -> str:
        return self.formatted


@dataclass(frozen=True)
class MissingValue:
    reason: str = ""

    def __str__(self) -> str:
        return ""


FieldValue = Union[TextValue, MoneyValue, DateValue, IdentifierValue, MissingValue]


class ValueType(str, Enum):
    TEXT = "text"
    DATE = "date"
    MONEY = "money"
    IDENTIFIER = "identifier"


class Cardinality(str, Enum):
    ONE = "one"
    OPTIONAL = "optional"
    MANY = "many"  # repeatable, at least one
    ANY = "any"  # repeatable, optional

    @property
    def required(self) -> bool:
        return self in (Cardinality.ONE, Cardinality.MANY)

    @property
    def repeatable(self) -> bool:
        return self in (Cardinality.MANY, Cardinality.ANY)


@dataclass(frozen=True)
class Anchor:
    """
    Literal landmark; normalized/collapsed are the folded search forms.
    word_start/word_end are set when the template literal began/ended with
    whitespace: a hit must not continue a word on that side.
    """

    text: str
    normalized: str
    collapsed: str
    word_start: bool = False
    word_end: bool = False


@dataclass(frozen=True)
class Capture:
    """Typed capture bounded by plan indices of its neighbouring anchors."""

    field_id: str
    field_key: str
    value_type: ValueType
    cardinality: Cardinality
    occurrence_index: int
    before: Optional[int]
    after: Optional[int]


Instruction = Union[Anchor, Capture]


@dataclass(frozen=True)
class ExtractionPlan:
    name: str
    instructions: Tuple[Instruction, ...]

    @property
    def captures(self) -> List[Capture]:
        return [i for i in self.instructions if isinstance(i, Capture)]

    @property
    def anchors(self) -> List[Anchor]:
        return [i for i in self.instructions if isinstance(i, Anchor)]


@dataclass(frozen=True)
class FieldResult:
    """Output of the anchor engine for one capture occurrence."""

    field_id: str
    field_key: str
    occurrence_index: int
    value_type: ValueType
    value: Optional[str]
    missing: bool
    start_offset: int
    end_offset: int
    confidence: float
    notes: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_id": self.field_id,
            "field_key": self.field_key,
            "occurrence_index": self.occurrence_index,
            "type": self.value_type.value,
            "value": self.value,
            "missing": self.missing,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "confidence": round(self.confidence, 4),
            "notes": list(self.notes),
        }


@dataclass
class FieldCandidate:
    """One proposed value for a field from some extraction strategy."""

    name: str
    raw_value: str
    method: str
    weight: float
    page: int = 0
    bbox: Optional[BBox] = None


@dataclass
class ValidatedField:
    """Selected, cleaned value for one field of a document."""

    name: str
    value: FieldValue
    method: str
    page: int = 0
    bbox: Optional[BBox] = None
    weight: float = 0.0

    @property
    def cleaned_value(self) -> str:
        return str(self.value)

    @property
    def missing(self) -> bool:
        return isinstance(self.value, MissingValue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.cleaned_value,
            "method": self.method,
            "page": self.page,
            "bbox": list(self.bbox) if self.bbox else None,
            "weight": round(self.weight, 4),
        }


@dataclass
class DetectionResult:
    """Independently produced detection: page range plus field guesses."""

    start_page: int
    end_page: int
    doc_type: str = ""
    fields: Dict[str, str] = field(default_factory=dict)
    confidence: float = 0.5

    @property
    def page_count(self) -> int:
        return self.end_page - self.start_page + 1


@dataclass
class DocumentRecord:
    """Per-document output of the pipeline."""

    boundary: DocumentBoundary
    header: str = ""
    subheader: str = ""
    footer: str = ""
    bands: List[BandSummary] = field(default_factory=list)
    density: float = 0.0
    bucket: str = "outro"
    role: str = "other"
    fields: List[ValidatedField] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    field_results: List[FieldResult] = field(default_factory=list)
    hash_match: Optional[Dict[str, str]] = None
    debug: Dict[str, Any] = field(default_factory=dict)
    paragraphs: List[Paragraph] = field(default_factory=list)  # kept for batch stability

    def field_value(self, name: str) -> str:
        for f in self.fields:
            if f.name == name:
                return f.cleaned_value
        return ""


@dataclass
class SourceResult:
    """Result of processing one source (one PDF or token stream)."""

    source: str
    total_pages: int
    documents: List[DocumentRecord] = field(default_factory=list)
    debug: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NgramStat:
    ngram: str
    docfreq: int
    tf: int

    def to_dict(self) -> Dict[str, Any]:
        return {"ngram": self.ngram, "docfreq": self.docfreq, "tf": self.tf}


@dataclass
class ParagraphStability:
    """Stable vs. variable n-grams for one paragraph position (1-based)."""

    paragraph: int
    docs_with_par: int
    stable_bigrams: List[NgramStat] = field(default_factory=list)
    stable_trigrams: List[NgramStat] = field(default_factory=list)
    variable_bigrams: List[NgramStat] = field(default_factory=list)
    variable_trigrams: List[NgramStat] = field(default_factory=list)
