from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lexidraft.constants import JWT_MIN_SECRET_BYTES


def check_jwt_secret(secret: str) -> str:
    """
    Reject HMAC secrets jwcrypto would refuse at sign/verify time.

    Raises:
        ValueError: If the secret is shorter than JWT_MIN_SECRET_BYTES.
    """
    if len(secret.encode("utf-8")) < JWT_MIN_SECRET_BYTES:
        raise ValueError(
            f"JWT secret must be at least {JWT_MIN_SECRET_BYTES} bytes "
            f"({JWT_MIN_SECRET_BYTES * 8} bits)"
        )
    return secret


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True)

    ENVIRONMENT: str = "development"

    # Credential verification (shared secret with the HTTP auth service)
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_LEEWAY_SECONDS: int = 0
    JWT_ACCESS_TOKEN_EXPIRY_SECONDS: int = 60 * 60

    # WebSocket settings
    WS_PATH: str = "/ws"
    WS_AUTH_TIMEOUT_SECONDS: float = 10.0

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FILE_PATH: str = "logs/logging_errors.log"
    LOG_CONSOLE_FORMAT: str = "human"

    # Loki settings
    LOKI_ENABLED: bool = False
    LOKI_URL: str = "http://loki:3100"
    LOKI_VERSION: str = "1"

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        return check_jwt_secret(v)


app_settings = Settings()
