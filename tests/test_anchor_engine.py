from __future__ import annotations

from despacho_extraction.anchor_engine import (
    BOTH_ANCHORS_CONFIDENCE,
    ONE_ANCHOR_CONFIDENCE,
    AnchorEngine,
    build_window_text,
    normalize_extraction_text,
    shape_ok,
)
from despacho_extraction.template_compiler import compile_text
from despacho_extraction.types import ValueType

TEMPLATE = (
    "Processo nº {{PROCESSO_ADMINISTRATIVO}}\n"
    "Perito: {{PERITO}}\n"
    "Valor: {{VALOR_ARBITRADO_JZ:money}}\n"
    "Fim"
)
DOCUMENT = (
    "Processo nº 0012345-67.2024.8.15\n"
    "Perito:   Maria da Silva\n"
    "\n"
    "Valor: R$ 1.500,00\n"
    "Fim"
)


def _by_key(results):
    return {r.field_key: r for r in results}


def test_captures_between_anchors() -> None:
    results = _by_key(AnchorEngine().run(compile_text(TEMPLATE), DOCUMENT))
    assert results["PROCESSO_ADMINISTRATIVO"].value == "0012345-67.2024.8.15"
    assert results["PERITO"].value == "Maria da Silva"
    assert results["VALOR_ARBITRADO_JZ"].value == "R$ 1.500,00"
    assert all(r.confidence == BOTH_ANCHORS_CONFIDENCE for r in results.values())


def test_offsets_point_into_normalized_text() -> None:
    normalized = normalize_extraction_text(DOCUMENT)
    for r in AnchorEngine().run(compile_text(TEMPLATE), DOCUMENT):
        assert normalized[r.start_offset:r.end_offset] == r.value


def test_reference_text_round_trips() -> None:
    reference = "Requisição de pagamento nº {{NUMERO}} em favor de {{PERITO}}, no valor de {{VALOR:money}}."
    filled = "Requisição de pagamento nº 123/2024 em favor de João Souza, no valor de R$ 800,00."
    results = AnchorEngine().run(compile_text(reference), filled)
    assert [r.missing for r in results] == [False, False, False]
    assert all(r.confidence > 0 for r in results)


def test_missing_anchor_reports_missing_captures() -> None:
    document = "Processo nº 0012345-67.2024.8.15\nPerito: Maria da Silva\nFim"
    results = _by_key(AnchorEngine().run(compile_text(TEMPLATE), document))
    assert results["PROCESSO_ADMINISTRATIVO"].missing is False
    for key in ("PERITO", "VALOR_ARBITRADO_JZ"):
        r = results[key]
        assert r.missing is True
        assert r.value is None
        assert r.confidence == 0.0
        assert (r.start_offset, r.end_offset) == (-1, -1)
        assert r.notes == ("anchor_not_found",)


def test_single_anchor_takes_rest_of_line() -> None:
    plan = compile_text("Assinado por {{ASSINANTE}}")
    (r,) = AnchorEngine().run(plan, "Documento assinado por JOSE DA SILVA\noutra linha")
    assert r.value == "JOSE DA SILVA"
    assert r.confidence == ONE_ANCHOR_CONFIDENCE
    assert "single_anchor" in r.notes


def test_type_mismatch_halves_confidence() -> None:
    plan = compile_text("Valor: {{VALOR:money}} fim")
    (r,) = AnchorEngine().run(plan, "Valor: a combinar fim")
    assert r.value == "a combinar"
    assert r.confidence == BOTH_ANCHORS_CONFIDENCE * 0.5
    assert "type_mismatch" in r.notes


def test_empty_span_is_missing() -> None:
    plan = compile_text("Perito: {{PERITO}} Valor: {{VALOR:money}}")
    results = _by_key(AnchorEngine().run(plan, "Perito: Valor: R$ 10,00"))
    assert results["PERITO"].missing is True
    assert results["PERITO"].notes == ("empty_span",)


def test_fuzzy_anchor_is_penalized() -> None:
    plan = compile_text("Requisição de pagamento {{NUMERO}} fim do texto")
    (r,) = AnchorEngine().run(plan, "Requisicao de pagamnto 123 fim do texto")
    assert r.missing is False
    assert "123" in r.value
    assert "fuzzy_anchor_before" in r.notes
    assert r.confidence < BOTH_ANCHORS_CONFIDENCE


def test_repeatable_capture_collects_every_occurrence() -> None:
    plan = compile_text("Item: {{ITEM*}}; fim")
    results = AnchorEngine().run(plan, "Item: laudo; fim Item: vistoria; fim")
    assert [(r.value, r.occurrence_index) for r in results] == [("laudo", 0), ("vistoria", 1)]


def test_letter_spaced_anchor_is_found() -> None:
    plan = compile_text("DESPACHO {{TIPO}} fim")
    (r,) = AnchorEngine().run(plan, "D E S P A C H O ordinatório fim")
    assert r.value == "ordinatório"


def test_shape_ok() -> None:
    assert shape_ok(ValueType.MONEY, "R$ 1.234,56")
    assert not shape_ok(ValueType.MONEY, "sem valor")
    assert shape_ok(ValueType.DATE, "25/08/2024")
    assert shape_ok(ValueType.IDENTIFIER, "123.456.789-09")
    assert not shape_ok(ValueType.IDENTIFIER, "n/a")
    assert not shape_ok(ValueType.TEXT, " - ")


def test_build_window_text(make_paragraph) -> None:
    paragraphs = [make_paragraph(f"parágrafo {i}") for i in range(5)]
    assert build_window_text(paragraphs, head=True, count=2) == "parágrafo 0\nparágrafo 1"
    assert build_window_text(paragraphs, head=False, count=1) == "parágrafo 4"
    assert build_window_text(paragraphs, count=0) == ""


def test_versus_anchor_does_not_match_inside_a_name() -> None:
    plan = compile_text("Promovente: {{PROMOVENTE}} x {{PROMOVIDO}}.")
    results = _by_key(AnchorEngine().run(plan, "Promovente: Maxwell Souza x Banco do Brasil."))
    assert results["PROMOVENTE"].value == "Maxwell Souza"
    assert results["PROMOVIDO"].value == "Banco do Brasil"
    assert all(r.confidence == BOTH_ANCHORS_CONFIDENCE for r in results.values())


def test_connective_anchor_skips_letters_inside_words() -> None:
    plan = compile_text("Perito {{PERITO}} e {{ESPECIALIDADE}}.")
    results = _by_key(AnchorEngine().run(plan, "Perito Jose Silva e Medicina."))
    assert results["PERITO"].value == "Jose Silva"
    assert results["ESPECIALIDADE"].value == "Medicina"


def test_glued_connective_leaves_capture_missing() -> None:
    plan = compile_text("Perito {{PERITO}} e {{ESPECIALIDADE}}.")
    results = _by_key(AnchorEngine().run(plan, "Perito Jose Silveira."))
    assert results["PERITO"].missing is True
    assert results["PERITO"].notes == ("anchor_not_found",)


def test_anchor_ending_in_ordinal_accepts_glued_number() -> None:
    plan = compile_text("Processo nº {{PROCESSO_ADMINISTRATIVO}} fim")
    (r,) = AnchorEngine().run(plan, "Processo nº0012345-67.2024.8.15 fim")
    assert r.value == "0012345-67.2024.8.15"
