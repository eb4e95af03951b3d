from typing import Optional, List
from urllib.parse import urlsplit

from pydantic import computed_field, Field, AliasChoices, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_INSECURE_DB_PASSWORDS = {
    "postgres",
    "password",
    "changeme",
}

_INSECURE_ALLOWED_ORIGINS_DEFAULTS = {
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
}


def _extract_password_from_database_url(database_url: str | None) -> str | None:
    if not database_url:
        return None
    try:
        parts = urlsplit(database_url)
        return parts.password
    except ValueError:
        return None


class Settings(BaseSettings):
    # Allow comma-separated env vars for list fields like ALLOWED_ORIGINS
    model_config = SettingsConfigDict(env_file=".env", env_parse_delimiter=",", extra="ignore")
    PROJECT_NAME: str = "ChatOps Assistant"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # CORS
    # Accept either a JSON array or a comma-separated string, normalized below.
    ALLOWED_ORIGINS: List[str] | str = Field(
        default_factory=lambda: ["http://localhost:5173"],
        validation_alias=AliasChoices("ALLOWED_ORIGINS", "FRONTEND_URL"),
    )

    # Database settings
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_SERVER: str = Field(
        default="db",
        validation_alias=AliasChoices("POSTGRES_SERVER", "POSTGRES_HOST", "POSTGRES_HOSTNAME"),
    )
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "chatops"

    DB_POOL_SIZE: int = Field(default=10, description="Number of persistent DB connections")
    DB_MAX_OVERFLOW: int = Field(default=20, description="Max additional connections under load")

    # Full DB URL (preferred in CI/containers). If not provided, we build it from POSTGRES_*.
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "SQLALCHEMY_DATABASE_URI"),
    )

    SQLALCHEMY_ECHO: bool = False

    # Gemini
    GOOGLE_API_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_API_KEY", "GEMINI_API_KEY"),
    )
    GEMINI_MODEL: str = "gemini-2.5-pro"
    GEMINI_TEMPERATURE: float = 0.7
    GEMINI_TOP_K: int = 40
    GEMINI_TOP_P: float = 0.95
    GEMINI_MAX_OUTPUT_TOKENS: int = 8192
    LLM_REQUEST_TIMEOUT: int = 120  # seconds

    # Tool-calling loop
    MAX_TOOL_ROUNDS: int = 6
    TOOL_CALL_TIMEOUT_MS: int = 30000
    CHATBOT_MAX_HISTORY: int = 100  # Maximum number of previous messages replayed to the model

    # Outbound HTTP calls made by tool providers
    EXTERNAL_API_TIMEOUT: float = 30.0

    # Jira
    JIRA_BASE_URL: Optional[str] = None
    JIRA_EMAIL: Optional[str] = None
    JIRA_API_TOKEN: Optional[str] = None
    JIRA_PROJECT_KEY: str = "KAN"

    # Notion
    NOTION_API_KEY: Optional[str] = None
    NOTION_VERSION: str = "2022-06-28"
    NOTION_DATABASE_ID: Optional[str] = None
    NOTION_PAGE_ID: Optional[str] = None

    # GitHub
    GITHUB_TOKEN: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GITHUB_TOKEN", "GITHUB_ACCESS_TOKEN"),
    )
    GITHUB_OWNER: Optional[str] = None
    GITHUB_REPO: Optional[str] = None
    GITHUB_DEFAULT_ASSIGNEE: Optional[str] = None

    # Slack
    SLACK_USER_TOKEN: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SLACK_USER_TOKEN", "SLACK_BOT_TOKEN"),
    )
    SLACK_CHANNEL_GENERAL: Optional[str] = None
    SLACK_CHANNEL_BACKEND: Optional[str] = None
    SLACK_CHANNEL_FRONTEND: Optional[str] = None

    @computed_field
    @property
    def GEMINI_CONFIGURED(self) -> bool:
        """Chat is only available when a Gemini API key is present."""
        return bool(self.GOOGLE_API_KEY)

    def model_post_init(self, __context):
        """
        Validate configuration on startup. In production, fail hard if insecure defaults are detected.
        """
        # Fill DATABASE_URL if it wasn't provided explicitly
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )

        is_prod = self.ENVIRONMENT.lower() == "production"
        errors = []
        db_url_password = _extract_password_from_database_url(self.DATABASE_URL)

        if is_prod:
            if db_url_password and db_url_password in _INSECURE_DB_PASSWORDS:
                errors.append(
                    "DATABASE_URL contains an insecure password. "
                    "Set a strong POSTGRES_PASSWORD (or provide DATABASE_URL with a strong password)."
                )

            # Require explicit ALLOWED_ORIGINS in production (avoid accidental localhost defaults)
            if not self.ALLOWED_ORIGINS or set(self.ALLOWED_ORIGINS).issubset(_INSECURE_ALLOWED_ORIGINS_DEFAULTS):
                errors.append(
                    "ALLOWED_ORIGINS must be set to your domain(s) in production (not localhost defaults)."
                )

            if self.DEBUG:
                errors.append("DEBUG must be False in production.")

        # Fail hard with all errors at once for easier debugging
        if errors:
            error_msg = "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return value

    @field_validator("MAX_TOOL_ROUNDS", "TOOL_CALL_TIMEOUT_MS", "LLM_REQUEST_TIMEOUT")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


settings = Settings()
