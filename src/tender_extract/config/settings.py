"""Pydantic settings models for the tender text-extraction pipeline.

Four settings classes load from separate YAML config files with environment
variable override support. Source priority (highest to lowest):

    1. Explicit keyword arguments (tests, callers embedding the pipeline)
    2. Environment variables (with prefix, e.g., EXTRACTION_MAX_PAGES_TO_OCR)
    3. .env file (for secrets, e.g., OCR_SPACE_API_KEY)
    4. YAML config file (e.g., config/extraction.yaml)
    5. Default values defined here

Config paths are resolved relative to PROJECT_ROOT so the pipeline works
regardless of the current working directory.
"""

from pathlib import Path

from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

# Resolve project root: settings.py -> config/ -> tender_extract/ -> src/ -> repo root
PROJECT_ROOT = Path(__file__).resolve().parents[3]

_CONFIG_DIR = PROJECT_ROOT / "config"
_ENV_FILE = PROJECT_ROOT / ".env"


class _YamlBackedSettings(BaseSettings):
    """Shared source ordering: init > env > .env > YAML > defaults."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


class ExtractionSettings(_YamlBackedSettings):
    """Per-document budgets, timeouts and retry policy for the orchestrator."""

    max_pages_to_ocr: int = 20
    max_document_bytes: int = 104_857_600  # 100MB
    document_timeout_seconds: float = 180.0
    document_concurrency: int = 2

    # Retry/backoff for cloud submissions and local recognition calls
    retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 10.0

    model_config = SettingsConfigDict(
        yaml_file=str(_CONFIG_DIR / "extraction.yaml"),
        env_prefix="EXTRACTION_",
        extra="ignore",
    )


class CloudOcrSettings(_YamlBackedSettings):
    """OCR.space submission options.

    The API key comes from .env or the environment only
    (``OCR_SPACE_API_KEY``) -- it must NEVER appear in YAML files.
    """

    enabled: bool = True
    api_key: str = ""
    endpoint: str = "https://apipro1.ocr.space/parse/image"
    language: str = "tur"
    engine: str = "2"
    detect_tables: bool = True
    detect_orientation: bool = True
    scale: bool = True
    max_file_size_mb: float = 45.0  # Pro tier accepts 50MB; keep headroom
    timeout_seconds: float = 90.0

    model_config = SettingsConfigDict(
        yaml_file=str(_CONFIG_DIR / "cloud_ocr.yaml"),
        env_file=str(_ENV_FILE),
        env_prefix="OCR_SPACE_",
        extra="ignore",
    )

    @property
    def configured(self) -> bool:
        """Return True if the cloud branch can be attempted at all."""
        return self.enabled and bool(self.api_key.strip())


class LocalOcrSettings(_YamlBackedSettings):
    """Tesseract engine, rasterization and page scheduling options."""

    enabled: bool = True
    languages: str = "tur+eng"
    tesseract_cmd: str = "tesseract"
    dpi: int = 300
    page_concurrency: int = 2
    recognition_timeout_seconds: float = 60.0
    temp_dir: str | None = None  # None = system temp directory
    early_stop: bool = True

    model_config = SettingsConfigDict(
        yaml_file=str(_CONFIG_DIR / "local_ocr.yaml"),
        env_prefix="LOCAL_OCR_",
        extra="ignore",
    )


class PipelineSettings(_YamlBackedSettings):
    """Pipeline operations: logging and output paths."""

    log_dir: str = "logs"
    log_max_bytes: int = 10_485_760  # 10MB
    log_backup_count: int = 5
    output_dir: str | None = None  # None = write sidecars next to the PDFs

    model_config = SettingsConfigDict(
        yaml_file=str(_CONFIG_DIR / "pipeline.yaml"),
        env_prefix="PIPELINE_",
        extra="ignore",
    )
