"""
Module 4a: Template Compiler.
Reference text with inline field markers -> typed Template -> immutable ExtractionPlan.

Marker grammar (inside double braces):
    {{KEY}}                 free text capture
    {{KEY:money}}           typed capture (text | date | money | identifier)
    {{perito_nome@PERITO}}  explicit field id, key after '@'
    {{VALOR:money?}}        optional; '*' optional+repeatable, '+' required+repeatable
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import TemplateCompileError
from .text_utils import collapse_spaced_letters, fold_phrase, normalize_whitespace
from .types import Anchor, Capture, Cardinality, ExtractionPlan, Instruction, ValueType

logger = logging.getLogger(__name__)

_MARKER_RE = re.compile(
    r"\{\{\s*"
    r"(?:(?P<id>[A-Za-z0-9_.\-]+)\s*@\s*)?"
    r"(?P<key>[A-Za-z][A-Za-z0-9_]*)"
    r"\s*(?::\s*(?P<type>[A-Za-z]+))?"
    r"\s*(?P<card>[?*+])?"
    r"\s*\}\}"
)

TYPE_ALIASES: Dict[str, ValueType] = {
    "text": ValueType.TEXT,
    "texto": ValueType.TEXT,
    "date": ValueType.DATE,
    "data": ValueType.DATE,
    "money": ValueType.MONEY,
    "valor": ValueType.MONEY,
    "identifier": ValueType.IDENTIFIER,
    "id": ValueType.IDENTIFIER,
    "cpf": ValueType.IDENTIFIER,
}

_CARDINALITY = {
    None: Cardinality.ONE,
    "?": Cardinality.OPTIONAL,
    "*": Cardinality.ANY,
    "+": Cardinality.MANY,
}


@dataclass(frozen=True)
class LiteralSegment:
    text: str


@dataclass(frozen=True)
class FieldSegment:
    field_id: str
    field_key: str
    value_type: ValueType
    cardinality: Cardinality


Segment = Union[LiteralSegment, FieldSegment]


@dataclass(frozen=True)
class Template:
    """Parsed reference text: alternating literal and field segments."""

    name: str
    segments: List[Segment]


def parse_template(text: str, name: str = "template") -> Template:
    """Split reference text into literal and field segments."""
    segments: List[Segment] = []
    default_ids: Dict[str, int] = {}
    pos = 0
    for m in _MARKER_RE.finditer(text):
        if m.start() > pos:
            segments.append(LiteralSegment(text[pos:m.start()]))
        key = m.group("key").upper()
        type_name = (m.group("type") or "text").lower()
        vtype = TYPE_ALIASES.get(type_name)
        if vtype is None:
            raise TemplateCompileError(key, f"unknown value type '{type_name}'")
        field_id = m.group("id")
        if not field_id:
            n = default_ids.get(key, 0)
            default_ids[key] = n + 1
            field_id = key.lower() if n == 0 else f"{key.lower()}_{n + 1}"
        segments.append(
            FieldSegment(
                field_id=field_id,
                field_key=key,
                value_type=vtype,
                cardinality=_CARDINALITY[m.group("card")],
            )
        )
        pos = m.end()
    if pos < len(text):
        segments.append(LiteralSegment(text[pos:]))
    leftover = re.search(r"\{\{[^}]*\}\}", "".join(s.text for s in segments if isinstance(s, LiteralSegment)))
    if leftover:
        raise TemplateCompileError(leftover.group(0), "malformed field marker")
    return Template(name=name, segments=segments)


def make_anchor(literal: str) -> Optional[Anchor]:
    """Anchor for a literal, or None when it is only whitespace."""
    text = normalize_whitespace(literal)
    if not text:
        return None
    return Anchor(
        text=text,
        normalized=fold_phrase(text),
        collapsed=fold_phrase(collapse_spaced_letters(text)),
        word_start=literal[:1].isspace(),
        word_end=literal[-1:].isspace(),
    )


def compile_template(template: Template) -> ExtractionPlan:
    """
    Validate boundaries and emit the plan.
    Every capture needs an anchor on at least one side; repeatable captures need both.
    """
    instructions: List[Instruction] = []
    pending: List[FieldSegment] = []  # captures waiting for their right anchor
    occurrences: Dict[str, int] = {}
    seen_ids: Dict[str, str] = {}
    last_anchor: Optional[int] = None

    def emit_capture(seg: FieldSegment, after: Optional[int]) -> None:
        occ = occurrences.get(seg.field_key, 0)
        occurrences[seg.field_key] = occ + 1
        instructions.append(
            Capture(
                field_id=seg.field_id,
                field_key=seg.field_key,
                value_type=seg.value_type,
                cardinality=seg.cardinality,
                occurrence_index=occ,
                before=last_anchor,
                after=after,
            )
        )

    for seg in template.segments:
        if isinstance(seg, LiteralSegment):
            anchor = make_anchor(seg.text)
            if anchor is None:
                continue
            anchor_idx = len(instructions) + len(pending)
            for p in pending:
                emit_capture(p, anchor_idx)
            pending = []
            instructions.append(anchor)
            last_anchor = len(instructions) - 1
            continue
        if seg.field_id in seen_ids:
            raise TemplateCompileError(seg.field_key, f"duplicate field id '{seg.field_id}'")
        seen_ids[seg.field_id] = seg.field_key
        if pending:
            raise TemplateCompileError(
                seg.field_key,
                f"no anchor between '{pending[-1].field_key}' and '{seg.field_key}'",
            )
        pending.append(seg)

    for p in pending:
        emit_capture(p, None)

    if not any(isinstance(i, Anchor) for i in instructions):
        key = next((i.field_key for i in instructions if isinstance(i, Capture)), "<none>")
        raise TemplateCompileError(key, f"template '{template.name}' has no literal anchors")
    for ins in instructions:
        if isinstance(ins, Capture):
            if ins.before is None and ins.after is None:
                raise TemplateCompileError(ins.field_key, "capture has no bounding anchor")
            if ins.cardinality.repeatable and (ins.before is None or ins.after is None):
                raise TemplateCompileError(ins.field_key, "repeatable capture needs anchors on both sides")

    plan = ExtractionPlan(name=template.name, instructions=tuple(instructions))
    logger.debug("Compiled template %s: %d anchors, %d captures",
                 template.name, len(plan.anchors), len(plan.captures))
    return plan


def compile_text(text: str, name: str = "template") -> ExtractionPlan:
    return compile_template(parse_template(text, name))


def load_plan(path: Union[str, Path]) -> ExtractionPlan:
    """Read and compile a UTF-8 template file; the plan can be shared read-only."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Template file not found: {path}")
    return compile_text(path.read_text(encoding="utf-8"), name=path.stem)
