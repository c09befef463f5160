from __future__ import annotations

from pathlib import Path

import pytest

from despacho_extraction.errors import TemplateCompileError
from despacho_extraction.template_compiler import (
    FieldSegment,
    LiteralSegment,
    compile_text,
    load_plan,
    make_anchor,
    parse_template,
)
from despacho_extraction.types import Anchor, Capture, Cardinality, ValueType


def test_parse_template_splits_literals_and_fields() -> None:
    template = parse_template("Perito: {{perito_nome@PERITO}}, valor {{VALOR_ARBITRADO_JZ:money?}}.", "t")
    kinds = [type(s) for s in template.segments]
    assert kinds == [LiteralSegment, FieldSegment, LiteralSegment, FieldSegment, LiteralSegment]
    perito, valor = template.segments[1], template.segments[3]
    assert (perito.field_id, perito.field_key, perito.value_type) == ("perito_nome", "PERITO", ValueType.TEXT)
    assert valor.value_type is ValueType.MONEY
    assert valor.cardinality is Cardinality.OPTIONAL


def test_compile_links_captures_to_neighbouring_anchors() -> None:
    plan = compile_text("Perito: {{PERITO}}, CPF {{CPF_PERITO:cpf}}.", "perito")
    assert [type(i) for i in plan.instructions] == [Anchor, Capture, Anchor, Capture, Anchor]
    first, second = plan.captures
    assert (first.before, first.after) == (0, 2)
    assert (second.before, second.after) == (2, 4)
    assert second.value_type is ValueType.IDENTIFIER
    assert [a.text for a in plan.anchors] == ["Perito:", ", CPF", "."]


def test_trailing_capture_keeps_left_anchor_only() -> None:
    plan = compile_text("Assinado por {{ASSINANTE}}")
    (cap,) = plan.captures
    assert (cap.before, cap.after) == (0, None)


def test_repeated_key_gets_distinct_ids_and_occurrences() -> None:
    plan = compile_text("Parte {{PARTE}} e parte {{PARTE}} fim")
    assert [(c.field_id, c.occurrence_index) for c in plan.captures] == [("parte", 0), ("parte_2", 1)]


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("{{A}}{{B}} fim", "no anchor between"),
        ("x {{id1@A}} y {{id1@B}} z", "duplicate field id"),
        ("Valor {{VALOR:weird}} fim", "unknown value type"),
        ("{{A}}", "has no literal anchors"),
        ("Itens: {{ITEM+}}", "repeatable capture needs anchors on both sides"),
        ("Valor {{1BAD}} fim", "malformed field marker"),
    ],
)
def test_invalid_templates_are_rejected(text: str, message: str) -> None:
    with pytest.raises(TemplateCompileError, match=message):
        compile_text(text)


def test_compile_error_names_the_field() -> None:
    with pytest.raises(TemplateCompileError) as excinfo:
        compile_text("Valor {{VALOR:weird}} fim")
    assert excinfo.value.field_key == "VALOR"


def test_make_anchor_folds_and_skips_blank_literals() -> None:
    anchor = make_anchor("  Requisição  de\nPagamento ")
    assert anchor is not None
    assert anchor.text == "Requisição de Pagamento"
    assert anchor.normalized == "requisicao de pagamento"
    assert make_anchor(" \n ") is None


def test_make_anchor_records_word_boundaries() -> None:
    connective = make_anchor(" x ")
    assert (connective.normalized, connective.word_start, connective.word_end) == ("x", True, True)
    label = make_anchor("Perito: ")
    assert (label.word_start, label.word_end) == (False, True)


def test_load_plan_uses_file_stem(tmp_path: Path) -> None:
    path = tmp_path / "cabecalho.txt"
    path.write_text("Processo nº {{PROCESSO_ADMINISTRATIVO}}\nPerito:", encoding="utf-8")
    plan = load_plan(path)
    assert plan.name == "cabecalho"
    assert [c.field_key for c in plan.captures] == ["PROCESSO_ADMINISTRATIVO"]


def test_load_plan_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_plan(tmp_path / "nada.txt")
