"""
Tunable thresholds and reference file paths for one run.
Thresholds are empirically tuned and kept at their calibrated values; override
them through a YAML file rather than editing defaults.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import yaml

from .errors import ConfigError
from .types import BAND_ORDER, Band

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BandScheme:
    """Ordered cut points; a value >= cut falls in that band, below all cuts is footer."""

    cuts: Tuple[Tuple[Band, float], ...]

    @classmethod
    def from_thresholds(cls, thresholds: Sequence[float]) -> "BandScheme":
        values = [float(t) for t in thresholds]
        if not values or len(values) > len(BAND_ORDER) - 1:
            raise ConfigError(f"Band scheme needs 1..{len(BAND_ORDER) - 1} cut points, got {len(values)}")
        if any(a <= b for a, b in zip(values, values[1:])):
            raise ConfigError(f"Band cut points must be strictly descending: {values}")
        return cls(cuts=tuple(zip(BAND_ORDER, values)))

    def classify(self, y: float) -> Band:
        for band, cut in self.cuts:
            if y >= cut:
                return band
        return Band.FOOTER

    @property
    def thresholds(self) -> List[float]:
        return [c for _, c in self.cuts]


# header >= 0.85, subheader [0.78, 0.85), body1 [0.55, 0.78), body2 [0.30, 0.55), footer < 0.30
DEFAULT_BANDS = BandScheme.from_thresholds([0.85, 0.78, 0.55, 0.30])
# Denser variant used when scanning field patterns band by band.
FIELD_BANDS = BandScheme.from_thresholds([0.88, 0.80, 0.65, 0.50, 0.35, 0.20])

_DESPACHO_REQUIRED = [
    "PROCESSO_ADMINISTRATIVO",
    "PROCESSO_JUDICIAL",
    "VARA",
    "COMARCA",
    "PROMOVENTE",
    "PROMOVIDO",
    "PERITO",
    "CPF_PERITO",
    "ESPECIALIDADE",
    "ESPECIE_DA_PERICIA",
    "VALOR_ARBITRADO_JZ",
    "DATA",
    "ASSINANTE",
]


def _default_required_fields() -> Dict[str, List[str]]:
    return {
        "despacho": list(_DESPACHO_REQUIRED),
        "autorizacao": _DESPACHO_REQUIRED + ["VALOR_ARBITRADO_DE"],
        "encaminhamento_georc": _DESPACHO_REQUIRED + ["VALOR_ARBITRADO_DE"],
        "encaminhamento_conselho": _DESPACHO_REQUIRED + ["VALOR_ARBITRADO_DE", "VALOR_ARBITRADO_CM"],
        "certidao": ["PROCESSO_ADMINISTRATIVO", "VALOR_ARBITRADO_CM", "DATA", "ASSINANTE"],
        "laudo": ["PROCESSO_JUDICIAL", "PERITO", "ESPECIALIDADE"],
        "other": [],
    }


@dataclass
class PipelineConfig:
    """Configuration for the reconstruction and extraction pipeline."""

    # Paths
    input_folder: Path = field(default_factory=Path)
    output_excel_path: Path = field(default_factory=lambda: Path("despachos_output.xlsx"))
    debug_output_dir: Optional[Path] = None  # If set, write per-source debug JSON
    perito_catalog_path: Optional[Path] = None
    honorarios_table_path: Optional[Path] = None
    honorarios_aliases_path: Optional[Path] = None
    laudo_hash_db_path: Optional[Path] = None
    rules_path: Optional[Path] = None
    head_template_path: Optional[Path] = None
    tail_template_path: Optional[Path] = None

    # Line builder (absolute units)
    line_merge_tolerance: float = 1.5
    knee_min_ratio: float = 1.6
    knee_min_gap: float = 0.1  # Floor for gap ratios so kerning noise is not a knee
    char_width_gap_factor: float = 0.8
    spaced_char_width_gap_factor: float = 2.2
    single_char_majority: float = 0.5

    # Paragraphs (normalized units)
    paragraph_gap_y: float = 0.03

    # Bands
    band_scheme: BandScheme = DEFAULT_BANDS
    field_band_scheme: BandScheme = FIELD_BANDS
    band_sample_count: int = 5

    # Header / footer derivation
    header_top_pct: float = 0.15
    footer_bottom_pct: float = 0.15
    header_max_paragraphs: int = 2
    footer_max_paragraphs: int = 2
    fallback_text_lines: int = 3

    # Document classification profile
    min_pages: int = 2
    max_pages: int = 6
    blank_max_pct: float = 15.0
    header_hints: List[str] = field(default_factory=lambda: [
        "poder judiciario", "tribunal de justica", "diretoria especial",
    ])
    footer_hints: List[str] = field(default_factory=lambda: [
        "documento assinado eletronicamente", "codigo verificador", "crc",
    ])
    despacho_hints: List[str] = field(default_factory=lambda: [
        "despacho", "requisicao de pagamento", "honorarios periciais",
    ])
    certidao_hints: List[str] = field(default_factory=lambda: [
        "certidao", "certifico",
    ])
    autorizacao_hints: List[str] = field(default_factory=lambda: [
        "autorizo a despesa", "autorizo o pagamento", "autorizacao da despesa", "defiro o pagamento",
    ])
    georc_hints: List[str] = field(default_factory=lambda: [
        "georc", "gerencia de orcamento", "reserva orcamentaria",
    ])
    conselho_hints: List[str] = field(default_factory=lambda: [
        "conselho da magistratura",
    ])
    # Certidão page inside a bundle: title in the top paragraphs, body or money on the page
    certidao_title_hints: List[str] = field(default_factory=lambda: ["certidao"])
    certidao_body_hints: List[str] = field(default_factory=lambda: [
        "certifico", "conselho da magistratura", "proferiram",
    ])
    certidao_date_hints: List[str] = field(default_factory=lambda: ["sessao", "reuniao", "data"])
    certidao_top_paragraphs: int = 3
    role_tail_chars: int = 4000

    # Anchor engine
    anchor_fuzzy_min_score: float = 90.0
    anchor_fuzzy_min_length: int = 8
    anchor_fuzzy_window: int = 4000
    max_capture_chars: int = 300
    head_window_paragraphs: int = 12
    tail_window_paragraphs: int = 12

    # Merge
    required_fields: Dict[str, List[str]] = field(default_factory=_default_required_fields)
    anchor_base_weight: float = 0.6
    anchor_weight_span: float = 0.4
    catalog_min_confidence: float = 0.6
    honorarios_tolerance: float = 0.15
    honorarios_prefer_valor_de: bool = True
    linkage_min_ratio: float = 0.2
    linkage_short_boundary_pages: int = 3

    # Stability analyzer
    stable_df_ratio: float = 0.6
    variable_df_ratio: float = 0.2
    stability_top_k: int = 20

    # Segmentation
    split_anexos: bool = False  # Secondary pass: child records for anexo bookmarks

    # Batch
    max_pdfs: Optional[int] = None
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self) -> None:
        for name in (
            "input_folder",
            "output_excel_path",
            "debug_output_dir",
            "perito_catalog_path",
            "honorarios_table_path",
            "honorarios_aliases_path",
            "laudo_hash_db_path",
            "rules_path",
            "head_template_path",
            "tail_template_path",
            "log_file",
        ):
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, Path(value))
        if isinstance(self.band_scheme, (list, tuple)):
            self.band_scheme = BandScheme.from_thresholds(self.band_scheme)
        if isinstance(self.field_band_scheme, (list, tuple)):
            self.field_band_scheme = BandScheme.from_thresholds(self.field_band_scheme)

    def required_for(self, role: str) -> List[str]:
        return list(self.required_fields.get(role, []))


def load_config(path: Union[str, Path], base: Optional[PipelineConfig] = None) -> PipelineConfig:
    """
    Load a YAML mapping and overlay it on the defaults (or on `base`).
    Unknown keys are rejected so typos do not silently fall back to defaults.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a YAML mapping")
    return config_from_mapping(data, base)


def config_from_mapping(data: Dict[str, Any], base: Optional[PipelineConfig] = None) -> PipelineConfig:
    known = {f.name for f in dataclasses.fields(PipelineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
    if "required_fields" in data and not isinstance(data["required_fields"], dict):
        raise ConfigError("required_fields must map a document role to a list of field names")
    base = base or PipelineConfig()
    cfg = dataclasses.replace(base, **data)
    logger.debug("Loaded config overrides: %s", sorted(data))
    return cfg
