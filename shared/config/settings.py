"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    CLAUDE = "claude"
    OPENAI = "openai"


class BlockchainMode(str, Enum):
    """Settlement ledger operation mode."""

    MOCK = "mock"
    TESTNET = "testnet"
    MAINNET = "mainnet"


class PostgresSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    user: str = "payattn"
    password: SecretStr = SecretStr("payattn_dev_password")
    db: str = "payattn"

    # Full SQLAlchemy URL, wins over the discrete fields when set
    # (e.g. sqlite+aiosqlite:///./payattn.db for local runs)
    url: str | None = None

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        if self.url:
            return self.url
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"

    @property
    def sync_url(self) -> str:
        """Generate sync SQLAlchemy connection URL."""
        pwd = self.password.get_secret_value()
        return f"postgresql://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class ZKSettings(BaseSettings):
    """Proof verification configuration."""

    model_config = SettingsConfigDict(env_prefix="ZK_")

    verification_keys_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent.parent / "circuits" / "verification_keys"
    )
    snarkjs_command: str = "npx snarkjs"
    verify_timeout_seconds: float = 5.0


class EscrowSettings(BaseSettings):
    """Escrow funding, settlement and retry configuration."""

    model_config = SettingsConfigDict(env_prefix="ESCROW_")

    # Ledger interaction
    confirmation_timeout_seconds: float = 30.0
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = 5.0
    backoff_max_seconds: float = 300.0
    scan_interval_seconds: float = 10.0

    # Offers that do not reach `accepted` within this window expire
    offer_expiry_seconds: int = 3600

    # Settlement split in basis points, platform takes the remainder
    user_share_bps: int = Field(default=7000, ge=0, le=10000)
    publisher_share_bps: int = Field(default=2500, ge=0, le=10000)

    program_id: str = "payattn-escrow"
    platform_destination: str = "platform-treasury"
    publisher_destination: str = "publisher-pool"

    @model_validator(mode="after")
    def shares_fit(self) -> "EscrowSettings":
        """User and publisher shares must leave a non-negative platform share."""
        if self.user_share_bps + self.publisher_share_bps > 10000:
            raise ValueError("user_share_bps + publisher_share_bps must be <= 10000")
        return self


class ClaudeSettings(BaseSettings):
    """Anthropic Claude API configuration."""

    model_config = SettingsConfigDict(env_prefix="CLAUDE_")

    api_key: SecretStr = Field(
        default=SecretStr(""),
        alias="ANTHROPIC_API_KEY",
    )
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 512


class OpenAISettings(BaseSettings):
    """OpenAI-compatible API configuration (OpenAI, Venice, ...)."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: SecretStr = SecretStr("")
    model: str = "gpt-4o-mini"
    base_url: str | None = None


class LLMSettings(BaseSettings):
    """LLM provider configuration for the decision oracle."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    enabled: bool = True
    provider: LLMProvider = LLMProvider.CLAUDE
    temperature: float = 0.1
    max_retries: int = 3
    timeout_seconds: int = 60

    # Provider-specific settings
    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)


class BlockchainSettings(BaseSettings):
    """Settlement ledger configuration."""

    model_config = SettingsConfigDict(env_prefix="BLOCKCHAIN_")

    mode: BlockchainMode = BlockchainMode.MOCK

    rpc_url_override: str | None = Field(default=None, alias="BLOCKCHAIN_RPC_URL")
    private_key: SecretStr = SecretStr("")

    @property
    def rpc_url(self) -> str:
        """Generate RPC URL based on mode."""
        if self.mode == BlockchainMode.MOCK:
            return ""
        if self.rpc_url_override:
            return self.rpc_url_override
        if self.mode == BlockchainMode.TESTNET:
            return "https://api.devnet.solana.com"
        return "https://api.mainnet-beta.solana.com"


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class ServicePorts(BaseSettings):
    """Service port configuration."""

    offers: int = Field(default=8010, alias="OFFERS_PORT")


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO

    # Project paths
    project_root: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent)

    # Service ports
    ports: ServicePorts = Field(default_factory=ServicePorts)

    # Durable store
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)

    # Proofs, escrow, ledger
    zk: ZKSettings = Field(default_factory=ZKSettings)
    escrow: EscrowSettings = Field(default_factory=EscrowSettings)
    blockchain: BlockchainSettings = Field(default_factory=BlockchainSettings)

    # Decision oracle
    llm: LLMSettings = Field(default_factory=LLMSettings)

    # JSON list of campaigns served by the static catalog
    campaigns_file: Path | None = None

    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
