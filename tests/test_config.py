from __future__ import annotations

from pathlib import Path

import pytest

from despacho_extraction.config import (
    DEFAULT_BANDS,
    FIELD_BANDS,
    BandScheme,
    PipelineConfig,
    config_from_mapping,
    load_config,
)
from despacho_extraction.errors import ConfigError
from despacho_extraction.types import Band


def test_default_band_schemes() -> None:
    assert DEFAULT_BANDS.thresholds == [0.85, 0.78, 0.55, 0.30]
    assert FIELD_BANDS.thresholds == [0.88, 0.80, 0.65, 0.50, 0.35, 0.20]


@pytest.mark.parametrize(
    ("y", "band"),
    [(0.9, Band.HEADER), (0.85, Band.HEADER), (0.8, Band.SUBHEADER), (0.6, Band.BODY1), (0.3, Band.BODY2), (0.1, Band.FOOTER)],
)
def test_default_band_classification(y: float, band: Band) -> None:
    assert DEFAULT_BANDS.classify(y) == band


@pytest.mark.parametrize("cuts", [[], [0.5, 0.6], [0.9, 0.8, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2]])
def test_invalid_band_schemes(cuts) -> None:
    with pytest.raises(ConfigError):
        BandScheme.from_thresholds(cuts)


def test_defaults() -> None:
    config = PipelineConfig()
    assert config.line_merge_tolerance == 1.5
    assert config.paragraph_gap_y == 0.03
    assert config.stability_top_k == 20
    assert config.band_scheme is DEFAULT_BANDS
    assert config.debug_output_dir is None


def test_string_paths_are_coerced() -> None:
    config = PipelineConfig(input_folder="pdfs", output_excel_path="out.xlsx")
    assert config.input_folder == Path("pdfs")
    assert config.output_excel_path == Path("out.xlsx")


def test_load_config_overlays_yaml(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "input_folder: ./despachos\n"
        "blank_max_pct: 20\n"
        "band_scheme: [0.9, 0.7, 0.5, 0.25]\n"
        "required_fields:\n"
        "  certidao: [DATA]\n",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.input_folder == Path("despachos")
    assert config.blank_max_pct == 20
    assert config.band_scheme.thresholds == [0.9, 0.7, 0.5, 0.25]
    assert config.required_for("certidao") == ["DATA"]
    assert config.required_for("despacho") == []


def test_load_config_keeps_base_values(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("split_anexos: true\n", encoding="utf-8")
    config = load_config(path, base=PipelineConfig(max_pdfs=3))
    assert config.split_anexos
    assert config.max_pdfs == 3


def test_empty_yaml_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == PipelineConfig()


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ConfigError, match="Unknown config keys: blank_pct"):
        config_from_mapping({"blank_pct": 10})


def test_required_fields_must_be_a_mapping() -> None:
    with pytest.raises(ConfigError, match="required_fields"):
        config_from_mapping({"required_fields": ["DATA"]})


def test_non_mapping_yaml_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="must be a YAML mapping"):
        load_config(path)


def test_broken_yaml_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("a: [1, 2\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Failed to parse"):
        load_config(path)


def test_non_descending_bands_in_yaml(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("band_scheme: [0.3, 0.5]\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="strictly descending"):
        load_config(path)


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_required_for_returns_a_copy() -> None:
    config = PipelineConfig()
    fields = config.required_for("certidao")
    fields.append("EXTRA")
    assert config.required_for("certidao") == ["PROCESSO_ADMINISTRATIVO", "VALOR_ARBITRADO_CM", "DATA", "ASSINANTE"]
    assert config.required_for("unknown") == []
