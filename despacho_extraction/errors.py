"""
Exception hierarchy for the despacho extraction engine.
Heuristic stages return None / empty results instead of raising; these are
reserved for unusable inputs (templates, configuration, catalogs).
"""


class ExtractionError(Exception):
    """Base class for all package errors."""


class TemplateCompileError(ExtractionError):
    """Template cannot be turned into an executable plan."""

    def __init__(self, field_key: str, reason: str) -> None:
        self.field_key = field_key
        self.reason = reason
        super().__init__(f"Cannot compile field '{field_key}': {reason}")


class ConfigError(ExtractionError):
    """Malformed configuration or rule file."""


class CatalogError(ExtractionError):
    """Reference catalog file is readable but structurally unusable."""
