"""Configuration management for the Payment Gateway"""

import os
import logging
from typing import List

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from the project root; real environment variables win
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    IS_TEST = ENVIRONMENT == "test"

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # HTTP server
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))

    # Database Configuration
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        "postgresql://payment-gateway:payment-gateway@db/payment-gateway",
    )
    # Every multi-statement transaction runs SERIALIZABLE; duplicate wallets,
    # derived wallets and orders are prevented by the store aborting one of
    # two conflicting transactions
    DB_ISOLATION_LEVEL = os.getenv("DB_ISOLATION_LEVEL", "SERIALIZABLE")
    DB_TRANSACTION_MAX_ATTEMPTS = int(os.getenv("DB_TRANSACTION_MAX_ATTEMPTS", "5"))
    DB_RETRY_BACKOFF_SECONDS = float(os.getenv("DB_RETRY_BACKOFF_SECONDS", "0.05"))
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "7"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "15"))
    # Development logs SQL with bound parameters
    DB_ECHO = os.getenv("DB_ECHO", "true" if ENVIRONMENT == "development" else "false").lower() == "true"

    # Redis Configuration (job queue)
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
    REDIS_DB = int(os.getenv("REDIS_DB", "0"))
    REDIS_SOCKET_TIMEOUT = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))  # seconds

    QUEUE_NAME = os.getenv("QUEUE_NAME", "PaymentGateway")
    PAYMENT_JOB_NAME = "payment"
    PAYMENT_JOB_TIMEOUT_SECONDS = int(os.getenv("PAYMENT_JOB_TIMEOUT_SECONDS", "3600"))  # 1 hour

    # Booker (job-processing peer reached over JSON-RPC WebSocket)
    BOOKER_PROVIDER_URL = os.getenv("BOOKER_PROVIDER_URL", "ws://booker:8080")
    BOOKER_ENABLED = os.getenv("BOOKER_ENABLED", "true").lower() == "true"
    BOOKER_CONNECT_TIMEOUT = float(os.getenv("BOOKER_CONNECT_TIMEOUT", "10"))
    BOOKER_RECONNECT_DELAY = float(os.getenv("BOOKER_RECONNECT_DELAY", "5"))

    # Payment methods
    SOURCE_PAYMENT_METHOD = os.getenv("SOURCE_PAYMENT_METHOD", "bitshares")
    SETTLEMENT_PAYMENT_METHOD = os.getenv("SETTLEMENT_PAYMENT_METHOD", "ethereum")

    # Ethereum
    ETHEREUM_REQUIRED_CONFIRMATIONS = int(os.getenv("ETHEREUM_REQUIRED_CONFIRMATIONS", "12"))
    ETHEREUM_HOT_ADDRESS = os.getenv("ETHEREUM_HOT_ADDRESS")
    ETHEREUM_HOT_PRIVATE_KEY = os.getenv("ETHEREUM_HOT_PRIVATE_KEY")
    ETHEREUM_COLD_MNEMONIC = os.getenv("ETHEREUM_COLD_MNEMONIC")
    ETHEREUM_COLD_ACCOUNT_PATH = os.getenv("ETHEREUM_COLD_ACCOUNT_PATH", "m/44'/60'/0'/0/{index}")

    # Payout response
    OUT_ORDER_COIN = os.getenv("OUT_ORDER_COIN", "USDT")

    @staticmethod
    def async_database_url() -> str:
        """DATABASE_URL rewritten for the asyncpg driver"""
        url = Config.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            # asyncpg uses 'ssl' instead of 'sslmode'
            url = url.replace("sslmode=", "ssl=")
        return url

    @staticmethod
    def validate() -> List[str]:
        """Return the list of configuration problems, logging each one"""
        problems = []

        if not Config.DATABASE_URL:
            problems.append("DATABASE_URL is not set")

        if not (Config.ETHEREUM_HOT_ADDRESS or Config.ETHEREUM_HOT_PRIVATE_KEY):
            problems.append("ETHEREUM_HOT_ADDRESS or ETHEREUM_HOT_PRIVATE_KEY must be set")

        if not Config.ETHEREUM_COLD_MNEMONIC:
            problems.append("ETHEREUM_COLD_MNEMONIC is not set")

        if Config.DB_TRANSACTION_MAX_ATTEMPTS < 1:
            problems.append("DB_TRANSACTION_MAX_ATTEMPTS must be at least 1")

        if Config.PAYMENT_JOB_TIMEOUT_SECONDS <= 0:
            problems.append("PAYMENT_JOB_TIMEOUT_SECONDS must be positive")

        for problem in problems:
            if Config.IS_PRODUCTION:
                logger.error(f"❌ CONFIG: {problem}")
            else:
                logger.warning(f"⚠️ CONFIG: {problem}")

        return problems

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Payment Gateway Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Database isolation: {Config.DB_ISOLATION_LEVEL}")
        logger.info(f"   Redis: {Config.REDIS_HOST}:{Config.REDIS_PORT} queue={Config.QUEUE_NAME}")
        logger.info(f"   Booker: {Config.BOOKER_PROVIDER_URL if Config.BOOKER_ENABLED else 'disabled'}")
        logger.info(
            f"   Payment methods: {Config.SOURCE_PAYMENT_METHOD} -> {Config.SETTLEMENT_PAYMENT_METHOD}"
        )
        logger.info(f"   Ethereum confirmations: {Config.ETHEREUM_REQUIRED_CONFIRMATIONS}")
