"""Configuration package -- typed, validated settings from YAML + .env."""

from .settings import (
    CloudOcrSettings,
    ExtractionSettings,
    LocalOcrSettings,
    PipelineSettings,
)

__all__ = [
    "CloudOcrSettings",
    "ExtractionSettings",
    "LocalOcrSettings",
    "PipelineSettings",
    "load_all_settings",
]


def load_all_settings() -> tuple[
    ExtractionSettings, CloudOcrSettings, LocalOcrSettings, PipelineSettings
]:
    """Load and return all configuration objects.

    Returns a tuple of (ExtractionSettings, CloudOcrSettings, LocalOcrSettings,
    PipelineSettings), each populated from its own YAML file with environment
    variable overrides.
    """
    return (
        ExtractionSettings(),
        CloudOcrSettings(),
        LocalOcrSettings(),
        PipelineSettings(),
    )
