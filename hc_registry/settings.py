from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.production"), extra="ignore")

    ENVIRONMENT: str = "LOCAL"

    # Database
    DATABASE_URL: str = "sqlite:///hc_registry.db"
    DATABASE_ECHO: bool = False
    ESDB_CONNECTION_STRING: str | None = None

    # Authentication
    JWT_SECRET_KEY: str = "secret_key"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    MIDDLEWARE_SECRET_KEY: str = "secret_key"

    LOG_LEVEL: str = "INFO"
    CORS_ALLOWED_ORIGINS: str = ""
    PROFILING_ENABLED: bool = False
    PROFILING_FORMAT: str = "html"

    # External ledger
    LEDGER_BACKEND: str = "memory"
    LEDGER_RPC_URL: str = "http://127.0.0.1:8545"
    LEDGER_CONTRACT_ADDRESS: str | None = None
    LEDGER_ABI_PATH: str = str(PACKAGE_DIR / "ledger" / "abi" / "HydrogenCredit.json")
    LEDGER_PRIVATE_KEY: str | None = None
    LEDGER_RPC_TIMEOUT_SECONDS: float = 10.0
    LEDGER_CONFIRMATION_TIMEOUT_SECONDS: float = 60.0

    # Pagination
    DEFAULT_PAGE_LIMIT: int = 10
    AUDIT_PAGE_LIMIT: int = 20
    MAX_PAGE_LIMIT: int = 100

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins into a clean list."""
        if not self.CORS_ALLOWED_ORIGINS:
            return []
        return [
            o.strip().strip("'\"").rstrip("/")
            for o in self.CORS_ALLOWED_ORIGINS.split(",")
            if o.strip()
        ]


settings = Settings()
