"""Synthetic receipt panels for exercising the metrics without production data."""

from .generator import (
    DEFAULT_ISSUERS,
    DEFAULT_TAXONOMY,
    PanelScenario,
    generate_panel,
)

__all__ = [
    "DEFAULT_ISSUERS",
    "DEFAULT_TAXONOMY",
    "PanelScenario",
    "generate_panel",
]
