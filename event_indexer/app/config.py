"""Config file."""
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONTRACTS_PATH = Path(__file__).resolve().parent / "registry" / "contracts.json"


class Settings(BaseSettings):
    """Application settings."""

    # RPC
    rpc_url: str = Field("https://sepolia-rollup.arbitrum.io/rpc", alias="RPC_URL")
    chain_id: int = Field(421614, alias="CHAIN_ID")  # Arbitrum Sepolia
    rpc_timeout: float = Field(30.0, gt=0, alias="RPC_TIMEOUT")

    # INDEXING
    start_block: int = Field(0, ge=0, alias="START_BLOCK")
    confirmations: int = Field(1, ge=0, alias="CONFIRMATIONS")
    poll_interval_ms: int = Field(5000, gt=0, alias="POLL_INTERVAL")
    subscription_poll_interval_ms: int = Field(2000, gt=0, alias="SUBSCRIPTION_POLL_INTERVAL")
    block_batch_size: int = Field(2000, gt=0, alias="BLOCK_BATCH_SIZE")

    # STORAGE
    storage_backend: str = Field("sqlalchemy", alias="STORAGE_BACKEND")
    database_path: Path = Field(Path("./data/indexer.db"), alias="DATABASE_PATH")
    database_url: str | None = Field(None, alias="DATABASE_URL")

    # API
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(3001, alias="API_PORT")

    # CONTRACTS
    contracts_path: Path = Field(DEFAULT_CONTRACTS_PATH, alias="CONTRACTS_PATH")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def assemble_db_url(self) -> "Settings":
        if not self.database_url:
            self.database_url = f"sqlite+aiosqlite:///{self.database_path}"
        return self

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def subscription_poll_interval(self) -> float:
        return self.subscription_poll_interval_ms / 1000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )


settings: Settings = Settings()
