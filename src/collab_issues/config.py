"""Configuration for the tracker server.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Nothing is required at startup: with no configuration the server keeps its data
under `./data` and listens on localhost.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TrackerSettings(BaseSettings):
    """Settings for the tracker server and CLI.

    Environment variables:
    - TRACKER_DATA_DIR          (optional)
    - LOG_LEVEL                 (optional)
    - TRACKER_HOST / TRACKER_PORT
    - TRACKER_AUDIT_GIT_COMMIT  (optional)
    - TRACKER_STATIC_DIR        (optional)
    - TRACKER_CORS_ORIGINS      (optional)
    - TRACKER_MAX_PENDING_EVENTS (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `TrackerSettings(_env_file=path_to_env)`.
    """

    data_dir: Path = Field(
        default=Path("data"),
        validation_alias="TRACKER_DATA_DIR",
        description="Directory holding issues.json, users.json and audit.jsonl",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    host: str = Field(default="127.0.0.1", validation_alias="TRACKER_HOST")
    port: int = Field(default=3000, validation_alias="TRACKER_PORT", ge=1, le=65535)

    audit_git_commit: bool = Field(
        default=False,
        validation_alias="TRACKER_AUDIT_GIT_COMMIT",
        description=(
            "If true, every audit record is also committed to git together with the data "
            "files. Only takes effect when the data directory lives inside a git work tree."
        ),
    )

    # Browser client served from the same process (optional).
    static_dir: Path = Field(default=Path("public"), validation_alias="TRACKER_STATIC_DIR")

    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="TRACKER_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    max_pending_events: int = Field(
        default=1000,
        validation_alias="TRACKER_MAX_PENDING_EVENTS",
        ge=1,
        description="Undelivered events a client may fall behind before it is dropped.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def issues_file(self) -> Path:
        """Path where the full issue collection is persisted."""

        return self.data_dir / "issues.json"

    @property
    def users_file(self) -> Path:
        """Path where the user roster is persisted."""

        return self.data_dir / "users.json"

    @property
    def audit_file(self) -> Path:
        """Path of the append-only audit history."""

        return self.data_dir / "audit.jsonl"
