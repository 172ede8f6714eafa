from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_ENV: str = "development"
    ALLOWED_ORIGINS: str = "http://127.0.0.1:3000,http://localhost:3000"
    ADMIN_API_KEY: str = ""
    LOG_LEVEL: str = "INFO"

    # storage
    STORE_BACKEND: str = "file"  # file | redis
    STATE_PATH: str = "data/state.json"
    EVENT_LOG_PATH: str = "data/claims.jsonl"
    REDIS_URL: str | None = None
    REDIS_PREFIX: str = "rewardgate"

    # claim profile (score based)
    CLAIM_CONVERSION_RATE: Decimal = Decimal("0.0001")  # 10000 score = 1 token
    CLAIM_PERIOD_CAP: Decimal = Decimal("1")
    CLAIM_COOLDOWN_MS: int = 60 * 60 * 1000
    ORIGIN_THROTTLE_MS: int = 60 * 1000

    # withdraw profile (direct amount)
    WITHDRAW_PERIOD_CAP: Decimal = Decimal("1000")
    WITHDRAW_COOLDOWN_MS: int = 0
    WITHDRAW_ORIGIN_THROTTLE_MS: int = 0

    REQUIRE_EVM_ADDRESS: bool = True
    TRUST_FORWARDED_FOR: bool = True

    # orchestration
    TRANSFER_TIMEOUT_SEC: float = 120.0
    CLAIMANT_LOCK_WAIT_SEC: float = 150.0

    # period reset
    RESET_TIMEZONE: str = "UTC"
    RESET_CHECK_INTERVAL_SEC: float = 60.0

    # transmitter
    TRANSMITTER_MODE: str = "mock"  # mock | web3
    RPC_URL: str | None = None
    PRIVATE_KEY: str | None = None
    TOKEN_ADDRESS: str | None = None
    TOKEN_DECIMALS: int = 18
    MAX_FEE_GWEI: Decimal = Decimal("50")
    MAX_PRIORITY_FEE_GWEI: Decimal = Decimal("30")
    MOCK_TREASURY_BALANCE: Decimal = Decimal("1000000")
    BALANCE_CACHE_TTL_SEC: int = 30

    # rate limit
    PUBLIC_RATE_LIMIT: str = "60/minute"
    ADMIN_RATE_LIMIT: str = "20/minute"


settings = Settings()
