from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path

import pytest

from despacho_extraction.errors import CatalogError
from despacho_extraction.reference import (
    HonorariosTable,
    LaudoHashDb,
    PeritoCatalog,
    load_aliases,
    load_catalogs,
    map_area_fallback,
)
from despacho_extraction.text_utils import content_hash


def _write(path: Path, text: str, encoding: str = "utf-8") -> Path:
    path.write_text(text, encoding=encoding)
    return path


@pytest.fixture
def perito_csv(tmp_path: Path) -> Path:
    return _write(
        tmp_path / "peritos.csv",
        "perito,CPF/CNPJ,especialidade\n"
        "Maria das Dores Silva,123.456.789-09,Engenharia Civil RG 1234567\n"
        "José Almeida,,Psicologia\n"
        "José Almeida,,Medicina do Trabalho\n"
        "contato@exemplo.com,,Grafotecnia\n"
        ",,\n",
        encoding="utf-8-sig",
    )


def test_perito_catalog_loads_rows(perito_csv: Path) -> None:
    catalog = PeritoCatalog.from_csv(perito_csv)
    assert len(catalog) == 3


def test_resolve_by_cpf(perito_csv: Path) -> None:
    match = PeritoCatalog.from_csv(perito_csv).resolve(cpf="12345678909")
    assert (match.info.name, match.confidence, match.method) == ("Maria das Dores Silva", 0.9, "cpf")
    assert match.info.especialidade == "Engenharia Civil"


def test_resolve_by_name_ignores_case_and_accents(perito_csv: Path) -> None:
    match = PeritoCatalog.from_csv(perito_csv).resolve(name="MARIA DAS DORES SILVA")
    assert (match.confidence, match.method) == (0.75, "name")


def test_ambiguous_name_lowers_confidence(perito_csv: Path) -> None:
    match = PeritoCatalog.from_csv(perito_csv).resolve(name="Jose Almeida")
    assert match.info.ambiguous
    assert match.confidence == 0.6


def test_fuzzy_name_match(perito_csv: Path) -> None:
    match = PeritoCatalog.from_csv(perito_csv).resolve(name="Maria das Dores Silvaa")
    assert (match.info.name, match.confidence, match.method) == ("Maria das Dores Silva", 0.65, "fuzzy_name")


def test_unknown_perito(perito_csv: Path) -> None:
    catalog = PeritoCatalog.from_csv(perito_csv)
    assert catalog.resolve(name="Fulano Beltrano de Tal") is None
    assert catalog.resolve() is None


def test_missing_catalog_file_is_empty(tmp_path: Path) -> None:
    catalog = PeritoCatalog.from_csv(tmp_path / "nao_existe.csv")
    assert len(catalog) == 0
    assert catalog.resolve(name="Maria") is None


def test_perito_catalog_without_columns_is_an_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "peritos.csv", "a,b\n1,2\n")
    with pytest.raises(CatalogError, match="name or CPF column"):
        PeritoCatalog.from_csv(path)


@pytest.fixture
def honorarios_csv(tmp_path: Path) -> Path:
    return _write(
        tmp_path / "honorarios.csv",
        "AREA,DESCRICAO,ID,VALOR\n"
        "ENGENHARIA E ARQUITETURA,Perícia de engenharia,E1,\"1.500,00\"\n"
        "ENGENHARIA E ARQUITETURA,Vistoria,E2,800.00\n"
        "CIÊNCIAS CONTÁBEIS,Exame grafotécnico,G1,\"R$ 1.200,00\"\n"
        "SEM VALOR,Linha inválida,X1,n/d\n",
    )


def test_honorarios_table_loads_values(honorarios_csv: Path) -> None:
    table = HonorariosTable.from_csv(honorarios_csv)
    assert len(table) == 3
    assert [e.valor for e in table.entries] == [Decimal("1500.00"), Decimal("800.00"), Decimal("1200.00")]


def test_honorarios_match_by_area_and_value(honorarios_csv: Path) -> None:
    table = HonorariosTable.from_csv(honorarios_csv)
    match = table.match("Engenheiro civil", Decimal("1450.00"))
    assert (match.entry.entry_id, match.confidence, match.method) == ("E1", 0.75, "area_value")
    assert table.match("Engenheiro civil", Decimal("3000.00")) is None
    assert table.match("Engenheiro civil") is None


def test_honorarios_alias_wins(honorarios_csv: Path, tmp_path: Path) -> None:
    aliases = _write(tmp_path / "aliases.json", json.dumps([{"targetId": "G1", "keywords": ["Grafotécnic"]}]))
    table = HonorariosTable.from_csv(honorarios_csv, aliases)
    match = table.match("Perito grafotécnico")
    assert (match.entry.descricao, match.confidence, match.method) == ("Exame grafotécnico", 0.9, "alias")


def test_area_map_overrides_fallback(honorarios_csv: Path) -> None:
    table = HonorariosTable.from_csv(honorarios_csv, area_map={"CIÊNCIAS CONTÁBEIS": ["perito judicial"]})
    assert table.map_area("Perito judicial") == "CIÊNCIAS CONTÁBEIS"
    assert table.map_area("Arquiteta") == "ENGENHARIA E ARQUITETURA"


def test_honorarios_table_requires_columns(tmp_path: Path) -> None:
    path = _write(tmp_path / "honorarios.csv", "AREA,VALOR\nX,10\n")
    with pytest.raises(CatalogError, match="DESCRICAO"):
        HonorariosTable.from_csv(path)


def test_aliases_must_be_json_list(tmp_path: Path) -> None:
    with pytest.raises(CatalogError, match="Invalid aliases JSON"):
        load_aliases(_write(tmp_path / "bad.json", "{nope"))
    with pytest.raises(CatalogError, match="JSON list"):
        load_aliases(_write(tmp_path / "obj.json", "{}"))
    assert load_aliases(tmp_path / "missing.json") == []


@pytest.mark.parametrize(
    ("text", "area"),
    [
        ("Grafotécnico", "CIÊNCIAS CONTÁBEIS"),
        ("Engenheira de segurança", "ENGENHARIA E ARQUITETURA"),
        ("Médico do trabalho", "MEDICINA / ODONTOLOGIA"),
        ("Assistente Social", "SERVIÇO SOCIAL"),
        ("Psicóloga", "PSICOLOGIA"),
        ("Tradutor", ""),
        ("", ""),
    ],
)
def test_map_area_fallback(text: str, area: str) -> None:
    assert map_area_fallback(text) == area


def test_laudo_hash_lookup(tmp_path: Path) -> None:
    digest = content_hash("Laudo  Pericial\nResposta aos quesitos")
    path = _write(tmp_path / "laudos.csv", f"hash_sha1,especie,autor\n{digest.upper()},Grafotécnica,Ana Souza\n")
    db = LaudoHashDb.from_csv(path)
    assert len(db) == 1
    entry = db.lookup("laudo pericial resposta aos QUESITOS")
    assert entry is not None
    assert entry.to_dict()["especie"] == "Grafotécnica"
    assert db.lookup("outro texto") is None
    assert db.lookup("") is None


def test_laudo_hash_db_requires_hash_column(tmp_path: Path) -> None:
    with pytest.raises(CatalogError, match="hash_sha1"):
        LaudoHashDb.from_csv(_write(tmp_path / "laudos.csv", "especie\nX\n"))


def test_load_catalogs_without_paths_is_empty() -> None:
    catalogs = load_catalogs()
    assert (len(catalogs.peritos), len(catalogs.honorarios), len(catalogs.laudo_hashes)) == (0, 0, 0)
