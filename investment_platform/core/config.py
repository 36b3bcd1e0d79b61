"""
Application configuration module.

Loads settings from environment variables (or .env file) using pydantic-settings.
All sensitive values (DB credentials, SMTP password) come from environment and
are never hardcoded.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the RWA Investment Platform API.

    Environment variables are loaded automatically from .env if present.
    In production, these should be injected via the container orchestrator
    (e.g., Kubernetes Secrets, AWS Parameter Store).
    """

    PROJECT_NAME: str = "RWA Investment Platform API"
    API_V1_STR: str = "/api/v1"

    # ── SQLite mode (no external DB required) ──
    USE_SQLITE: bool = False

    # ── PostgreSQL connection parameters ──
    # Empty defaults so USE_SQLITE=true works without dummy PG variables.
    # The validator below enforces all four when USE_SQLITE is False.
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_SERVER: str = ""
    POSTGRES_DB: str = ""
    POSTGRES_PORT: int = 5432

    # ── Connection pool tuning ──
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30  # seconds to wait for a connection from the pool
    DB_POOL_RECYCLE: int = 1800  # seconds before a connection is recycled

    # ── CORS ──
    # Comma-separated list of allowed origins. "*" in dev, restrict in prod.
    CORS_ORIGINS: str = "*"

    # ── Logging ──
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024
    LOG_FILE_BACKUP_COUNT: int = 5

    # ── Resilience ──
    CB_FAILURE_THRESHOLD: int = 5
    CB_RECOVERY_TIMEOUT: float = 30.0
    # Upper bound for a whole confirm/cancel call when the caller gives none.
    CONFIRMATION_TIMEOUT_SECONDS: float = 30.0

    # ── Blockchain (bond token minting) ──
    BLOCKCHAIN_ENABLED: bool = False
    BLOCKCHAIN_NETWORK: Literal["mainnet", "testnet"] = "testnet"
    SONIC_RPC_URL: str = "https://rpc.soniclabs.com"
    SONIC_TESTNET_RPC_URL: str = "https://rpc.testnet.soniclabs.com"
    # Hex key of the operator account that signs mint transactions and pays gas.
    BLOCKCHAIN_PRIVATE_KEY: str = ""
    BLOCKCHAIN_RPC_TIMEOUT: float = 15.0
    BLOCKCHAIN_RECEIPT_TIMEOUT: float = 60.0
    BLOCKCHAIN_RECEIPT_POLL_INTERVAL: float = 2.0

    # ── Email notifications ──
    EMAIL_ENABLED: bool = False
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_FROM: str = "noreply@rwa.com"
    SMTP_FROM_NAME: str = "RWA Investments"
    FRONTEND_URL: str = "http://localhost:3000"

    @model_validator(mode="after")
    def _require_pg_credentials_unless_sqlite(self) -> "Settings":
        """Fail fast if PostgreSQL credentials are missing in production mode."""
        if not self.USE_SQLITE:
            missing = [
                name
                for name in (
                    "POSTGRES_USER",
                    "POSTGRES_PASSWORD",
                    "POSTGRES_SERVER",
                    "POSTGRES_DB",
                )
                if not getattr(self, name)
            ]
            if missing:
                vars_list = ", ".join(missing)
                raise ValueError(
                    f"PostgreSQL mode requires these environment variables: "
                    f"{vars_list}.\n\n"
                    f"Either set them (in .env or the environment), or run "
                    f"against in-memory SQLite:\n"
                    f"       USE_SQLITE=true uvicorn investment_platform.main:app"
                )
        return self

    @model_validator(mode="after")
    def _require_key_when_minting(self) -> "Settings":
        """An enabled minting adapter without a signing key can never succeed."""
        if self.BLOCKCHAIN_ENABLED and not self.BLOCKCHAIN_PRIVATE_KEY:
            raise ValueError(
                "BLOCKCHAIN_ENABLED=true requires BLOCKCHAIN_PRIVATE_KEY "
                "(the operator key that signs mint transactions)."
            )
        return self

    @property
    def DATABASE_URL(self) -> str:
        """Construct the async database DSN.

        Returns an in-memory SQLite URL when ``USE_SQLITE`` is enabled,
        otherwise a PostgreSQL DSN for asyncpg.
        """
        if self.USE_SQLITE:
            return "sqlite+aiosqlite://"
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def rpc_url(self) -> str:
        """JSON-RPC endpoint for the configured network."""
        if self.BLOCKCHAIN_NETWORK == "mainnet":
            return self.SONIC_RPC_URL
        return self.SONIC_TESTNET_RPC_URL

    @property
    def chain_id(self) -> int:
        return 146 if self.BLOCKCHAIN_NETWORK == "mainnet" else 64165

    @property
    def explorer_url(self) -> str:
        if self.BLOCKCHAIN_NETWORK == "mainnet":
            return "https://sonicscan.org"
        return "https://testnet.sonicscan.org"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
