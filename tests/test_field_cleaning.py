from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from despacho_extraction.field_cleaning import (
    clean_cnj,
    clean_cpf,
    clean_date,
    clean_money,
    clean_person_name,
    clean_sei_process,
    clean_value,
    field_kind,
    find_dates,
    normalize_field_name,
    parse_money,
    validate_value,
)
from despacho_extraction.types import DateValue, IdentifierValue, MoneyValue, TextValue

TODAY = date(2025, 3, 1)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Valor arbitrado (JZ)", "VALOR_ARBITRADO_JZ"),
        ("CPF/CNPJ", "CPF_PERITO"),
        ("Data da autorização da despesa", "DATA"),
        ("Espécie da perícia", "ESPECIE_DA_PERICIA"),
        ("Juízo", "VARA"),
        ("Nome do juiz", "NOME_DO_JUIZ"),
    ],
)
def test_normalize_field_name(raw: str, expected: str) -> None:
    assert normalize_field_name(raw) == expected


def test_field_kind() -> None:
    assert field_kind("VALOR_ARBITRADO_DE") == "money"
    assert field_kind("CPF_PERITO") == "cpf"
    assert field_kind("ASSINANTE") == "person"
    assert field_kind("QUALQUER") == "text"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1.234,56", "1234.56"),
        ("150000", "1500.00"),
        ("12,50", "12.50"),
        ("R$ 2.000,00 (dois mil reais)", "2000.00"),
        ("R$1.500", "1500.00"),
        ("850", "850.00"),
        ("1234.5", "1234.50"),
    ],
)
def test_parse_money(raw: str, expected: str) -> None:
    assert str(parse_money(raw)) == expected


@pytest.mark.parametrize("raw", ["", "sem valor", "R$ 0,00", "1.2.3"])
def test_clean_money_rejects(raw: str) -> None:
    assert clean_money(raw) is None


def test_clean_money_formats_two_decimals() -> None:
    value = clean_money("R$ 1.234,5")
    assert value == MoneyValue(Decimal("1234.50"))
    assert str(value) == "1234.50"


def test_clean_cpf() -> None:
    assert clean_cpf("CPF 12345678909") == IdentifierValue("12345678909", "123.456.789-09")
    assert clean_cpf("123.456.789") is None


def test_clean_cnj_accepts_formatted_and_bare_digits() -> None:
    formatted = "0801234-56.2023.8.15.2001"
    assert str(clean_cnj(f"Processo {formatted}")) == formatted
    assert str(clean_cnj("08012345620238152001")) == formatted
    assert clean_cnj("123") is None


def test_clean_sei_process() -> None:
    assert str(clean_sei_process("Processo nº 0012345-67.2024.8.15")) == "0012345-67.2024.8.15"
    assert clean_sei_process("sem número") is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("25 de agosto de 2024", date(2024, 8, 25)),
        ("05/01/23", date(2023, 1, 5)),
        ("João Pessoa, 3 de março de 2024.", date(2024, 3, 3)),
        ("em 10.09.2024", date(2024, 9, 10)),
    ],
)
def test_clean_date(raw: str, expected: date) -> None:
    assert clean_date(raw, TODAY) == DateValue(expected)


@pytest.mark.parametrize("raw", ["31/02/2024", "01/01/2030", "01/01/1985", "32 de agosto de 2024", "sem data"])
def test_clean_date_rejects(raw: str) -> None:
    assert clean_date(raw, TODAY) is None


def test_find_dates_returns_text_order() -> None:
    found = find_dates("Em 02/01/2024 e depois em 5 de fevereiro de 2024", TODAY)
    assert [d for _, d in found] == [date(2024, 1, 2), date(2024, 2, 5)]


def test_clean_person_name_strips_noise() -> None:
    assert clean_person_name("Perito: JOÃO DA SILVA - joao@exemplo.com") == TextValue("JOÃO DA SILVA")
    assert clean_person_name("MariaSouza Lima") == TextValue("Maria Souza Lima")
    assert clean_person_name("Dr.") is None


def test_clean_value_dispatches_on_field_kind() -> None:
    assert clean_value("VALOR_ARBITRADO_JZ", "R$ 800,00") == MoneyValue(Decimal("800.00"))
    assert clean_value("DATA", "25/08/2024", TODAY) == DateValue(date(2024, 8, 25))
    assert clean_value("COMARCA", " Campina Grande. ") == TextValue("Campina Grande")
    assert clean_value("CPF_PERITO", "123") is None


def test_validate_value_shape_rules() -> None:
    assert validate_value("PERITO", TextValue("Ana Souza"))
    assert not validate_value("PERITO", TextValue("Tribunal de Justiça"))
    assert not validate_value("COMARCA", TextValue("12"))
    assert not validate_value("VALOR_ARBITRADO_JZ", MoneyValue(Decimal("2000000.00")))
    assert validate_value("VALOR_ARBITRADO_JZ", MoneyValue(Decimal("1500.00")))
