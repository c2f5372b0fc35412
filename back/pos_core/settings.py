from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    Values come from the process environment first, then from `config.env`
    (non-dot env file, some environments block creating `.env*` files) and
    `.env` when present.
    """

    model_config = SettingsConfigDict(
        # Prefer reading env files from the repository root, regardless of CWD.
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="pos", validation_alias="DB_USER")
    db_password: str = Field(default="pos", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="pos", validation_alias="DB_NAME")
    # Full URL override, e.g. sqlite:///./pos.db for local runs
    database_url_override: str | None = Field(default=None, validation_alias="DATABASE_URL")
    db_echo: bool = Field(default=False, validation_alias="DB_ECHO")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")

    # Real-time fan-out
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    event_channel_prefix: str = Field(default="pos:", validation_alias="EVENT_CHANNEL_PREFIX")
    api_url: str = Field(default="http://localhost:8020", validation_alias="API_URL")

    # Order lifecycle
    order_code_length: int = Field(default=6, validation_alias="ORDER_CODE_LENGTH")
    order_code_max_attempts: int = Field(default=5, validation_alias="ORDER_CODE_MAX_ATTEMPTS")
    strict_status_transitions: bool = Field(default=False, validation_alias="STRICT_STATUS_TRANSITIONS")
    default_page_size: int = Field(default=50, validation_alias="DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=100, validation_alias="MAX_PAGE_SIZE")

    # CORS configuration
    cors_origins: str = Field(
        default="http://localhost:5173",
        validation_alias="CORS_ORIGINS"
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # SQLModel uses SQLAlchemy under the hood; this uses the psycopg driver (v3).
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
