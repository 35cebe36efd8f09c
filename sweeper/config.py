"""
Campus Retention Sweeper — Configuration via environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All settings read from env / .env file."""

    # Database (sweep run history)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./sweeper.db",
        description="Async SQLAlchemy DB URL",
    )

    # Firebase
    firebase_cred_path: str = Field(
        default="", description="Path to Firebase service account key JSON"
    )
    firebase_project_id: str = Field(
        default="", description="Override the project id from the service account"
    )

    # Sweeper schedule
    sweep_enabled: bool = Field(default=True, description="Arm the periodic sweeper on startup")
    sweep_interval_hours: float = Field(default=6.0, gt=0)
    sweep_batch_size: int = Field(
        default=100, ge=1, le=500, description="Documents per atomic batch (Firestore caps batches at 500)"
    )
    sweep_batch_delay_ms: int = Field(default=100, ge=0, description="Pause between batches of one task")
    store_call_timeout_s: float = Field(default=30.0, gt=0, description="Deadline for each Firestore call")

    # Retention windows
    notification_retention_days: int = Field(default=30, ge=1)
    media_retention_days: int = Field(default=30, ge=1)
    reaction_retention_days: int = Field(default=90, ge=1)
    presence_retention_hours: int = Field(default=24, ge=1)

    log_level: str = Field(default="INFO")

    @property
    def sweep_interval_seconds(self) -> float:
        return self.sweep_interval_hours * 3600

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
