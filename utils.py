"""
ClmmLP - Utility Functions
Error types, Uniswap V3 price math and logging helpers
"""
import logging
import math
import os
from typing import Dict, Any, Optional, Tuple

logger = logging.getLogger(__name__)

Q96 = 2 ** 96
MIN_TICK = -887272
MAX_TICK = 887272


class ClmmBotError(Exception):
    """Base class for errors raised by the liquidity bot"""


class GatewayError(ClmmBotError):
    """Pool, account or RPC state could not be read"""


class TxError(ClmmBotError):
    """A transaction could not be submitted or was not confirmed"""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class PreconditionError(ClmmBotError):
    """Nothing to do: a lifecycle precondition does not hold"""


class UniswapV3Utils:
    """Price and tick conversions for Uniswap V3 pools"""

    @staticmethod
    def sqrt_price_x96_to_price(sqrt_price_x96: int, token0_decimals: int, token1_decimals: int) -> float:
        """
        Convert a pool's sqrtPriceX96 into a human price

        Args:
            sqrt_price_x96: slot0 sqrtPriceX96 value
            token0_decimals: Token0 decimals
            token1_decimals: Token1 decimals

        Returns:
            Price of one token0 expressed in token1 units
        """
        raw_price = (sqrt_price_x96 / Q96) ** 2
        return raw_price * (10 ** (token0_decimals - token1_decimals))

    @staticmethod
    def tick_to_price(tick: int, token0_decimals: int = 18, token1_decimals: int = 18) -> float:
        """
        Convert tick to a human price (token1 per token0)

        Args:
            tick: Tick value
            token0_decimals: Token0 decimals
            token1_decimals: Token1 decimals

        Returns:
            Price as float
        """
        return (1.0001 ** tick) * (10 ** (token0_decimals - token1_decimals))

    @staticmethod
    def price_to_tick(price: float, token0_decimals: int = 18, token1_decimals: int = 18) -> float:
        """
        Convert a human price to an (unrounded) tick

        Args:
            price: Price of token0 in token1 units
            token0_decimals: Token0 decimals
            token1_decimals: Token1 decimals

        Returns:
            Tick value as float
        """
        if price <= 0:
            raise ValueError(f"Price must be positive, got {price}")
        raw_price = price * (10 ** (token1_decimals - token0_decimals))
        return math.log(raw_price) / math.log(1.0001)

    @staticmethod
    def price_range_to_ticks(
        lower_price: float,
        upper_price: float,
        tick_spacing: int,
        token0_decimals: int = 18,
        token1_decimals: int = 18
    ) -> Tuple[int, int]:
        """
        Map a price band onto ticks usable by the pool

        The lower bound is rounded down and the upper bound rounded up to the
        tick spacing so the band never shrinks; the result is clamped to the
        usable tick range and always spans at least one spacing.

        Args:
            lower_price: Lower band price
            upper_price: Upper band price
            tick_spacing: Pool tick spacing
            token0_decimals: Token0 decimals
            token1_decimals: Token1 decimals

        Returns:
            Tuple of (tick_lower, tick_upper)
        """
        if lower_price > upper_price:
            raise ValueError(f"Lower price {lower_price} is above upper price {upper_price}")

        raw_lower = UniswapV3Utils.price_to_tick(lower_price, token0_decimals, token1_decimals)
        raw_upper = UniswapV3Utils.price_to_tick(upper_price, token0_decimals, token1_decimals)

        tick_lower = math.floor(raw_lower / tick_spacing) * tick_spacing
        tick_upper = math.ceil(raw_upper / tick_spacing) * tick_spacing

        min_usable = math.ceil(MIN_TICK / tick_spacing) * tick_spacing
        max_usable = math.floor(MAX_TICK / tick_spacing) * tick_spacing
        tick_lower = max(tick_lower, min_usable)
        tick_upper = min(tick_upper, max_usable)

        if tick_upper <= tick_lower:
            tick_upper = tick_lower + tick_spacing

        return tick_lower, tick_upper

    @staticmethod
    def to_ui_amount(amount: int, decimals: int) -> float:
        """Convert a raw token amount to display units"""
        return amount / (10 ** decimals)

    @staticmethod
    def format_token_amount(amount: int, decimals: int, symbol: str = "") -> str:
        """
        Format token amount for display

        Args:
            amount: Amount in raw units
            decimals: Token decimals
            symbol: Token symbol

        Returns:
            Formatted string
        """
        formatted_amount = amount / (10 ** decimals)
        return f"{formatted_amount:.6f} {symbol}".strip()


def describe_transaction_error(error: Exception) -> Dict[str, str]:
    """
    Classify a transaction error and provide a meaningful message

    Args:
        error: Exception object

    Returns:
        Error information dictionary
    """
    error_msg = str(error)
    lowered = error_msg.lower()

    if "insufficient funds" in lowered:
        return {
            'type': 'insufficient_funds',
            'message': 'Insufficient native balance for gas fees',
            'suggestion': 'Add more native currency to the wallet'
        }
    elif "gas" in lowered:
        return {
            'type': 'gas_limit',
            'message': 'Transaction gas limit exceeded',
            'suggestion': 'Increase MAX_GAS_LIMIT or retry later'
        }
    elif "slippage" in lowered or "price slippage check" in lowered:
        return {
            'type': 'slippage',
            'message': 'Price slippage too high',
            'suggestion': 'Widen the price range or reduce position size'
        }
    elif "deadline" in lowered or "transaction too old" in lowered:
        return {
            'type': 'deadline',
            'message': 'Transaction deadline exceeded',
            'suggestion': 'Check RPC latency; the next tick will retry'
        }
    elif "nonce" in lowered:
        return {
            'type': 'nonce',
            'message': 'Nonce error',
            'suggestion': 'Wait for pending transactions to confirm'
        }
    else:
        return {
            'type': 'unknown',
            'message': error_msg,
            'suggestion': 'Check the logs for details'
        }


class Logger:
    """Logging utilities"""

    @staticmethod
    def setup_logging(level: str = "INFO", log_file: str = None):
        """
        Set up logging configuration

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path
        """
        log_level = getattr(logging, level.upper())

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)

        handlers = [console_handler]
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        logging.basicConfig(
            level=log_level,
            handlers=handlers,
            force=True
        )

    @staticmethod
    def log_transaction(tx_hash: str, operation: str, success: bool, details: Dict[str, Any] = None):
        """
        Log transaction details

        Args:
            tx_hash: Transaction hash
            operation: Operation type (open_position, close_position, ...)
            success: Whether transaction was successful
            details: Additional details
        """
        status = "SUCCESS" if success else "FAILED"
        logger.info(f"Transaction {status}: {operation} - {tx_hash}")

        if details:
            for key, value in details.items():
                logger.info(f"  {key}: {value}")
