"""
Configuration management for ClmmLP.
Loads settings from environment variables.
"""
import os
from dotenv import load_dotenv

load_dotenv()

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class Config:
    """Configuration for the concentrated-liquidity bot"""

    # Network settings
    ETHEREUM_RPC_URL = os.getenv('ETHEREUM_RPC_URL', 'https://mainnet.infura.io/v3/YOUR_PROJECT_ID')
    CHAIN_ID = int(os.getenv('CHAIN_ID', '1'))
    CHAIN_NAME = os.getenv('CHAIN_NAME', 'Ethereum Mainnet')
    NATIVE_SYMBOL = os.getenv('NATIVE_SYMBOL', 'ETH')

    # Private key handling - ONLY environment variable references allowed
    PRIVATE_KEY = os.getenv('PRIVATE_KEY')
    if PRIVATE_KEY:
        if not PRIVATE_KEY.startswith('${') or not PRIVATE_KEY.endswith('}'):
            raise ValueError("PRIVATE_KEY must reference an environment variable using ${VARIABLE_NAME} format. Never store private keys directly in files!")

        env_var_name = PRIVATE_KEY[2:-1]
        PRIVATE_KEY = os.getenv(env_var_name)

        if not PRIVATE_KEY:
            raise ValueError(f"Environment variable '{env_var_name}' referenced in PRIVATE_KEY is not set")
    else:
        # PRIVATE_KEY not set - this is OK for testing/imports
        PRIVATE_KEY = None

    # Pool identity
    POOL_ADDRESS = os.getenv('POOL_ADDRESS', '')
    UNISWAP_V3_POSITION_MANAGER = os.getenv('UNISWAP_V3_POSITION_MANAGER', '0xC36442b4a4522E871399CD717aBDD847Ab11FE88')

    # Position policy
    PRICE_RANGE_PERCENT = float(os.getenv('PRICE_RANGE_PERCENT', '5'))
    REBALANCE_THRESHOLD_PERCENT = float(os.getenv('REBALANCE_THRESHOLD_PERCENT', '1'))
    MIN_NATIVE_BALANCE = float(os.getenv('MIN_NATIVE_BALANCE', '0.05'))
    CHECK_INTERVAL_MINUTES = float(os.getenv('CHECK_INTERVAL_MINUTES', '5'))

    # Gas and timeouts
    MAX_GAS_LIMIT = int(os.getenv('MAX_GAS_LIMIT', '500000'))
    RPC_TIMEOUT_SECONDS = float(os.getenv('RPC_TIMEOUT_SECONDS', '30'))
    TX_TIMEOUT_SECONDS = float(os.getenv('TX_TIMEOUT_SECONDS', '180'))

    # Telegram alerting
    TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
    TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')

    # Discord alerting
    DISCORD_WEBHOOK_URL = os.getenv('DISCORD_WEBHOOK_URL', '')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_FILE = os.getenv('LOG_FILE', 'logs/clmm_bot.log')

    @classmethod
    def validate_config(cls) -> bool:
        """Validate that required configuration is present"""
        errors = []

        if not cls.ETHEREUM_RPC_URL or 'YOUR_PROJECT_ID' in cls.ETHEREUM_RPC_URL:
            errors.append("ETHEREUM_RPC_URL must be set to a valid RPC endpoint")

        if not cls.PRIVATE_KEY:
            errors.append("PRIVATE_KEY is required (use ${VARIABLE_NAME} format)")

        if not cls.POOL_ADDRESS:
            errors.append("POOL_ADDRESS is required")
        elif not cls._is_valid_address(cls.POOL_ADDRESS):
            errors.append(f"Invalid POOL_ADDRESS format: {cls.POOL_ADDRESS}")

        if not cls._is_valid_address(cls.UNISWAP_V3_POSITION_MANAGER):
            errors.append(f"Invalid UNISWAP_V3_POSITION_MANAGER format: {cls.UNISWAP_V3_POSITION_MANAGER}")

        if cls.PRICE_RANGE_PERCENT < 0:
            errors.append(f"PRICE_RANGE_PERCENT must be non-negative, got {cls.PRICE_RANGE_PERCENT}")

        if cls.PRICE_RANGE_PERCENT >= 100:
            errors.append(f"PRICE_RANGE_PERCENT must be below 100, got {cls.PRICE_RANGE_PERCENT}")

        if cls.REBALANCE_THRESHOLD_PERCENT < 0:
            errors.append(f"REBALANCE_THRESHOLD_PERCENT must be non-negative, got {cls.REBALANCE_THRESHOLD_PERCENT}")

        if cls.MIN_NATIVE_BALANCE < 0:
            errors.append(f"MIN_NATIVE_BALANCE must be non-negative, got {cls.MIN_NATIVE_BALANCE}")

        if cls.CHECK_INTERVAL_MINUTES <= 0:
            errors.append(f"CHECK_INTERVAL_MINUTES must be positive, got {cls.CHECK_INTERVAL_MINUTES}")

        if cls.RPC_TIMEOUT_SECONDS <= 0:
            errors.append(f"RPC_TIMEOUT_SECONDS must be positive, got {cls.RPC_TIMEOUT_SECONDS}")

        if cls.TX_TIMEOUT_SECONDS <= 0:
            errors.append(f"TX_TIMEOUT_SECONDS must be positive, got {cls.TX_TIMEOUT_SECONDS}")

        if cls.LOG_LEVEL not in LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(LOG_LEVELS)}, got {cls.LOG_LEVEL}")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    @staticmethod
    def _is_valid_address(address: str) -> bool:
        """Check if address is valid Ethereum address format"""
        if not address:
            return False

        if not (address.startswith('0x') and len(address) == 42):
            return False

        if not all(c in '0123456789abcdefABCDEF' for c in address[2:]):
            return False

        try:
            from web3 import Web3
            return Web3.to_checksum_address(address) is not None
        except (ValueError, TypeError) as e:
            import logging
            logging.getLogger(__name__).debug(f"Address validation failed for {address}: {e}")
            return False
