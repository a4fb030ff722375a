from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env into os.environ
load_dotenv()


class Settings(BaseSettings):
    """Engine configuration settings backed by environment variables."""

    default_timeout_ms: int = Field(
        default=30000,
        validation_alias="SQLCHECK_DEFAULT_TIMEOUT_MS",
        description="Default per-statement deadline when the caller supplies none."
    )
    default_max_rows: int = Field(
        default=1000,
        validation_alias="SQLCHECK_DEFAULT_MAX_ROWS",
        description="Default row cap for sample execution."
    )
    connect_timeout_sec: int = Field(
        default=10,
        validation_alias="SQLCHECK_CONNECT_TIMEOUT_SEC",
        description="Connect timeout handed to every dialect driver."
    )
    max_sql_length: int = Field(
        default=10000,
        validation_alias="SQLCHECK_MAX_SQL_LENGTH",
        description="Statements longer than this get a length warning."
    )
    interrupt_grace_ms: int = Field(
        default=2000,
        validation_alias="SQLCHECK_INTERRUPT_GRACE_MS",
        description="How long a timed-out statement may take to stop after interrupt before its connection is retired."
    )

    breaker_fail_max: int = Field(
        default=5,
        validation_alias="SQLCHECK_BREAKER_FAIL_MAX",
        description="Consecutive connect failures before a target's breaker opens."
    )
    breaker_reset_timeout_sec: int = Field(
        default=30,
        validation_alias="SQLCHECK_BREAKER_RESET_TIMEOUT_SEC",
        description="Seconds an open breaker waits before allowing a trial connect."
    )

    log_level: str = Field(default="INFO", validation_alias="SQLCHECK_LOG_LEVEL")
    log_json: bool = Field(
        default=False,
        validation_alias="SQLCHECK_LOG_JSON",
        description="Emit JSON log lines instead of plain text."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def configure_env(self, env: str) -> None:
        """Loads environment-specific variables and reloads settings."""
        if not env:
            return

        load_dotenv(f".env.{env}", override=True)
        new_settings = Settings()
        self.__dict__.update(new_settings.__dict__)

settings = Settings()

# Configure logging during import
from sqlcheck.common.logger import configure_logging
configure_logging(level=settings.log_level, json_format=settings.log_json)
