"""
Despacho Extraction - layout reconstruction and template-based field extraction
for court-document PDFs. Fully offline, deterministic, explainable.
"""

__version__ = "0.1.0"

from .config import PipelineConfig, load_config
from .errors import CatalogError, ConfigError, ExtractionError, TemplateCompileError
from .pipeline import DocumentPipeline, run_pipeline
from .template_compiler import compile_text, load_plan

__all__ = [
    "DocumentPipeline",
    "PipelineConfig",
    "load_config",
    "run_pipeline",
    "compile_text",
    "load_plan",
    "ExtractionError",
    "TemplateCompileError",
    "ConfigError",
    "CatalogError",
    "__version__",
]
