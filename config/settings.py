"""
Advisor CRM Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Paths (use ADVISOR_ prefix)
    data_path: Path = Field(
        default=Path("./data"),
        alias="ADVISOR_DATA_PATH",
        description="Directory holding crm.db"
    )

    # Server
    port: int = Field(default=8000, alias="ADVISOR_PORT")
    host: str = Field(default="0.0.0.0", alias="ADVISOR_HOST")

    # ==========================================================================
    # IMPORT SOURCES
    # ==========================================================================
    # Scope and window are read once per import cycle and passed into the
    # coordinator as an ImportConfig. Changing them takes effect on next kick.
    # ==========================================================================

    calendar_identifier: str = Field(
        default="",
        alias="ADVISOR_CALENDAR_ID",
        description="Identifier of the calendar to import from"
    )
    contacts_group_identifier: str = Field(
        default="",
        alias="ADVISOR_CONTACTS_GROUP",
        description="Contact group to import (\"*\" imports every contact)"
    )
    contacts_csv_path: Path = Field(
        default=Path("./data/contacts.csv"),
        alias="ADVISOR_CONTACTS_CSV",
        description="Contacts CSV export used by the contacts adapter"
    )
    import_lookback_days: int = Field(default=30, alias="ADVISOR_IMPORT_LOOKBACK_DAYS")
    import_lookahead_days: int = Field(default=30, alias="ADVISOR_IMPORT_LOOKAHEAD_DAYS")

    calendar_import_enabled: bool = Field(
        default=True,
        alias="ADVISOR_CALENDAR_IMPORT_ENABLED",
    )
    contacts_import_enabled: bool = Field(
        default=True,
        alias="ADVISOR_CONTACTS_IMPORT_ENABLED",
    )

    # Throttle windows for non-manual kicks (seconds)
    periodic_throttle_seconds: float = Field(default=300.0, alias="ADVISOR_PERIODIC_THROTTLE")
    change_throttle_seconds: float = Field(default=10.0, alias="ADVISOR_CHANGE_THROTTLE")

    # Duplicate detection
    duplicate_match_threshold: float = Field(
        default=0.60,
        alias="ADVISOR_DUPLICATE_THRESHOLD",
        description="Minimum score for a name to be reported as a probable duplicate"
    )

    # Local LLM (Ollama) for semantic note analysis
    semantic_extractor_enabled: bool = Field(
        default=False,
        alias="ADVISOR_SEMANTIC_EXTRACTOR",
        description="Try the local LLM before falling back to pattern matching"
    )
    ollama_host: str = Field(default="http://localhost:11434", alias="OLLAMA_HOST")
    ollama_model: str = Field(default="qwen2.5:7b-instruct", alias="OLLAMA_MODEL")
    ollama_timeout: int = Field(default=45, alias="OLLAMA_TIMEOUT")

    @property
    def crm_db_path(self) -> Path:
        """Path to the CRM SQLite database."""
        return self.data_path / "crm.db"


settings = Settings()
