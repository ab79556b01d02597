# votifier/config.py

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = 8192


class Settings(BaseSettings):
    """
    Vote receiver configuration, read from VOTIFIER_* environment variables
    or a votifier.env file. Build it once at startup and pass it along.
    """

    model_config = SettingsConfigDict(
        env_prefix="VOTIFIER_",
        env_file="votifier.env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Network Settings ---
    HOST: str = "0.0.0.0"
    PORT: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    # Seconds a sender gets to deliver its ciphertext block.
    READ_TIMEOUT: float = Field(default=5.0, gt=0)
    SEND_GREETING: bool = False

    # --- Storage Settings ---
    DATA_DIR: Path = Path("Votifier")
    RSA_DIRECTORY: Path | None = None
    LISTENER_DIRECTORY: Path | None = None
    KEY_SIZE: int = Field(default=2048, ge=1024)

    # --- Host event bus ---
    EVENT_QUEUE_SIZE: int = Field(default=1000, ge=1)

    # --- Logging Settings ---
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    @model_validator(mode="after")
    def _derive_directories(self) -> "Settings":
        if self.RSA_DIRECTORY is None:
            self.RSA_DIRECTORY = self.DATA_DIR / "rsa"
        if self.LISTENER_DIRECTORY is None:
            self.LISTENER_DIRECTORY = self.RSA_DIRECTORY / "listener"
        return self


def load_settings(env_file: str | Path | None = None, **overrides) -> Settings:
    """Builds Settings, optionally from a specific env file."""
    if env_file is not None:
        return Settings(_env_file=env_file, **overrides)
    return Settings(**overrides)
