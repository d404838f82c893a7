import os
from dotenv import load_dotenv

load_dotenv()


def _require_env(key: str, *fallbacks: str) -> str:
    """Get required environment variable or raise error."""
    for name in (key, *fallbacks):
        value = os.getenv(name)
        if value:
            return value
    raise ValueError(f"{key} environment variable is required")


class Settings:
    DATABASE_URL: str = _require_env("DATABASE_URL")

    # Server settings
    DEFAULT_PORT: int = int(os.getenv("PORT", "3402"))
    DEFAULT_HOST: str = os.getenv("HOST", "0.0.0.0")
    PUBLIC_URL: str = os.getenv("PUBLIC_URL", "http://localhost:3402")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Route table
    ENDPOINTS_CONFIG: str = os.getenv("ENDPOINTS_CONFIG", "endpoints.yaml")

    # x402 payment settings
    FACILITATOR_URL: str = os.getenv("FACILITATOR_URL", "https://facilitator.x402.org")
    FACILITATOR_SIGNER: str = _require_env("FACILITATOR_SIGNER")
    WALLET_ADDRESS: str = _require_env("WALLET_ADDRESS")
    PAYMENT_NETWORK: str = os.getenv("PAYMENT_NETWORK", "base")
    PAYMENT_TOKEN_ADDRESS: str = os.getenv(
        "PAYMENT_TOKEN_ADDRESS", "0x587Cd533F418825521f3A1daa7CCd1E7339A1B07"
    )
    PAYMENT_TOKEN_SYMBOL: str = os.getenv("PAYMENT_TOKEN_SYMBOL", "STARKBOT")
    PAYMENT_TOKEN_DECIMALS: int = int(os.getenv("PAYMENT_TOKEN_DECIMALS", "18"))
    PAYMENT_TOKEN_NAME: str = os.getenv("PAYMENT_TOKEN_NAME", "StarkBot")
    PAYMENT_TOKEN_VERSION: str = os.getenv("PAYMENT_TOKEN_VERSION", "1")
    PAYMENT_TIMEOUT_SECONDS: int = int(os.getenv("PAYMENT_TIMEOUT_SECONDS", "300"))

    # Test mode - accept any X-PAYMENT header without contacting the facilitator
    X402_TEST_MODE: bool = os.getenv("X402_TEST_MODE", "false").lower() == "true"

    # Generation provider (fal.run compatible)
    PROVIDER_BASE_URL: str = os.getenv("PROVIDER_BASE_URL", "https://fal.run")
    PROVIDER_API_KEY: str = _require_env("PROVIDER_API_KEY", "FAL_KEY")
    PROVIDER_AUTH_SCHEME: str = os.getenv("PROVIDER_AUTH_SCHEME", "Key")
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "120"))

    # Object storage (S3 compatible)
    S3_ENDPOINT: str = os.getenv("S3_ENDPOINT", "")
    S3_REGION: str = os.getenv("S3_REGION", "us-east-1")
    S3_BUCKET: str = os.getenv("S3_BUCKET", "generated-media")
    S3_ACCESS_KEY: str = os.getenv("S3_ACCESS_KEY", "")
    S3_SECRET_KEY: str = os.getenv("S3_SECRET_KEY", "")
    S3_CDN_URL: str = os.getenv("S3_CDN_URL", "http://localhost:9000/generated-media")

    # Artifact lifecycle
    MEDIA_TTL_DAYS: int = int(os.getenv("MEDIA_TTL_DAYS", "30"))
    CLEANUP_INTERVAL_SECONDS: float = float(os.getenv("CLEANUP_INTERVAL_SECONDS", "3600"))

    # Post-processing
    TRANSCODER_BIN: str = os.getenv("TRANSCODER_BIN", "ffmpeg")
    SCRATCH_DIR: str = os.getenv("SCRATCH_DIR", "tmp")


settings = Settings()
