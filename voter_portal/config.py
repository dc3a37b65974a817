from __future__ import annotations

from pathlib import Path
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_origins(raw: Any) -> List[str]:
    """
    Normalize CORS allow origins from env.

    Supports:
      - "*" or empty
      - comma-separated string: "https://a.com, https://b.com"
    """
    s = ("" if raw is None else str(raw)).strip()
    if not s or s == "*":
        return ["*"]

    parts = [p.strip() for p in s.split(",")]
    parts = [p for p in parts if p]
    return parts or ["*"]


def _clean(v: Any) -> str:
    return ("" if v is None else str(v)).strip()


class Settings(BaseSettings):
    """
    Central app settings (backend).

    Services never read this object directly: the app factory derives
    GatewayConfig / SearchIndexConfig from it and injects them, so tests
    can build collaborators with fake endpoints without touching env vars.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # App identity
    env: str = Field(default="local", alias="APP_ENV")
    app_name: str = Field(default="voter-portal", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server runtime (uvicorn)
    host: str = Field(default="127.0.0.1", alias="HOST")  # set 0.0.0.0 for LAN / container
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # CORS, raw comma-separated string (see cors_allow_origins)
    cors_allow_origins_raw: str = Field(default="*", alias="CORS_ALLOW_ORIGINS")

    # Preferred: a real SQLAlchemy URL (SQLite now, Postgres later)
    database_url: str = Field(default="", alias="DATABASE_URL")

    # Back-compat: allow DB_PATH if DATABASE_URL not set
    db_path: str = Field(default="./data/voter_portal.sqlite", alias="DB_PATH")

    # -------------------------
    # Messaging gateway (WhatsApp Cloud API)
    # -------------------------
    whatsapp_api_url: str = Field(default="", alias="WHATSAPP_API_URL")
    whatsapp_access_token: str = Field(default="", alias="WHATSAPP_ACCESS_TOKEN")
    whatsapp_phone_number_id: str = Field(default="", alias="WHATSAPP_PHONE_NUMBER_ID")
    whatsapp_template_name: str = Field(default="voter_reference_notification", alias="WHATSAPP_TEMPLATE_NAME")
    whatsapp_template_language: str = Field(default="en_US", alias="WHATSAPP_TEMPLATE_LANGUAGE")
    whatsapp_timeout_s: float = Field(default=10.0, alias="WHATSAPP_TIMEOUT")

    # -------------------------
    # Secondary search index (optional; empty URL means no-op indexer)
    # -------------------------
    search_index_url: str = Field(default="", alias="SEARCH_INDEX_URL")
    search_index_name: str = Field(default="references", alias="SEARCH_INDEX_REFERENCES")
    search_index_username: str = Field(default="", alias="SEARCH_INDEX_USERNAME")
    search_index_password: str = Field(default="", alias="SEARCH_INDEX_PASSWORD")
    search_index_timeout_s: float = Field(default=5.0, alias="SEARCH_INDEX_TIMEOUT")

    # -------------------------
    # Reference pipeline
    # -------------------------
    reference_batch_limit: int = Field(default=10, alias="REFERENCE_BATCH_LIMIT")
    # If True, POST /references waits for gateway outcomes before responding.
    reference_wait_for_delivery: bool = Field(default=False, alias="REFERENCE_WAIT_FOR_DELIVERY")
    # If True, admins cannot move a reference backwards (APPLIED -> PENDING etc).
    reference_forward_only_status: bool = Field(default=False, alias="REFERENCE_FORWARD_ONLY_STATUS")

    background_max_concurrency: int = Field(default=20, alias="BACKGROUND_MAX_CONCURRENCY")
    background_drain_timeout_s: float = Field(default=15.0, alias="BACKGROUND_DRAIN_TIMEOUT")

    # -------------------------
    # Validators / normalizers
    # -------------------------

    @field_validator("log_level", mode="before")
    @classmethod
    def _norm_log_level(cls, v: Any) -> str:
        return _clean(v).upper() or "INFO"

    @field_validator("host", mode="before")
    @classmethod
    def _norm_host(cls, v: Any) -> str:
        return _clean(v) or "127.0.0.1"

    @field_validator("whatsapp_api_url", "search_index_url", mode="before")
    @classmethod
    def _norm_base_url(cls, v: Any) -> str:
        return _clean(v).rstrip("/")

    @field_validator(
        "database_url",
        "whatsapp_access_token",
        "whatsapp_phone_number_id",
        "search_index_username",
        "search_index_password",
        mode="before",
    )
    @classmethod
    def _norm_plain(cls, v: Any) -> str:
        return _clean(v)

    @field_validator("db_path", mode="before")
    @classmethod
    def _norm_db_path(cls, v: Any) -> str:
        return _clean(v) or "./data/voter_portal.sqlite"

    @field_validator("reference_batch_limit", mode="after")
    @classmethod
    def _norm_batch_limit(cls, v: int) -> int:
        return max(1, int(v))

    # -------------------------
    # Derived helpers
    # -------------------------

    @property
    def is_prod(self) -> bool:
        return str(self.env).strip().lower() in ("prod", "production")

    @property
    def cors_allow_origins(self) -> List[str]:
        return _split_origins(self.cors_allow_origins_raw)

    @property
    def resolved_database_url(self) -> str:
        """
        Priority:
        1) DATABASE_URL if provided
        2) Build sqlite:/// URL from DB_PATH

        Accepts:
          - DB_PATH can be full sqlite URL ("sqlite:///./data/x.sqlite" or "sqlite:////abs/path")
          - Or file path ("./data/x.sqlite", "data/x.sqlite", "/abs/path/x.sqlite")
        """
        if self.database_url:
            return self.database_url

        path = (self.db_path or "").strip() or "./data/voter_portal.sqlite"

        if path.startswith("sqlite:"):
            return path

        p = Path(path)

        if not p.is_absolute():
            if str(p).startswith("./"):
                return f"sqlite:///{p.as_posix()}"
            return f"sqlite:///./{p.as_posix()}"

        # Absolute path needs 4 slashes after scheme (sqlite:////abs/path)
        return f"sqlite:////{p.as_posix().lstrip('/')}"


settings = Settings()
