"""
LP Position Manager for ClmmLP
Withdraws out-of-range positions and opens a new one around the current price
"""
import logging
import time
from typing import Callable, List, Optional, Tuple

from alert_manager import AlertManager
from utils import PreconditionError, TxError, UniswapV3Utils, describe_transaction_error

logger = logging.getLogger(__name__)

# Minimum raw amount of each token needed to open a position
MIN_TOKEN_AMOUNT = 1000
# Share of each balance deployed; the rest is kept for fees and slippage
ALLOCATION_PERCENT = 95
# Wait after withdrawals before the dependent create
SETTLE_DELAY_SECONDS = 5


def calculate_price_range(current_price: float, range_percent: float) -> Tuple[float, float]:
    """
    Symmetric price band around the current price

    Args:
        current_price: Current pool price
        range_percent: Band half-width in percent (5 = +/-5%)

    Returns:
        Tuple of (lower_price, upper_price)
    """
    fraction = range_percent / 100
    return current_price * (1 - fraction), current_price * (1 + fraction)


def calculate_position_amounts(amount_a: int, amount_b: int) -> Tuple[int, int]:
    """Amounts to deposit: ALLOCATION_PERCENT of each balance, truncated"""
    return amount_a * ALLOCATION_PERCENT // 100, amount_b * ALLOCATION_PERCENT // 100


class LPPositionManager:
    """Manager for the bot's concentrated-liquidity position"""

    def __init__(self,
                 gateway,
                 alert_manager: AlertManager,
                 config,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the LP Position Manager

        Args:
            gateway: Pool gateway
            alert_manager: Notification sink
            config: Configuration object
            sleep: Function used for the settle delay
        """
        self.gateway = gateway
        self.alert_manager = alert_manager
        self.config = config
        self.sleep = sleep

    def _report_error(self, error: Exception, action: str, **context):
        details = {'action': action}
        details.update(context)
        if isinstance(error, TxError):
            info = describe_transaction_error(error)
            details['error_type'] = info['type']
            details['suggestion'] = info['suggestion']
            if error.tx_hash:
                details['tx_hash'] = error.tx_hash
        self.alert_manager.send_error_notification(error, details)

    def _check_create_preconditions(self):
        """
        Return the token balances to deploy, or raise PreconditionError

        Returns:
            Tuple of (pool, balance_a, balance_b)
        """
        positions = self.gateway.list_positions()
        if positions:
            raise PreconditionError(f"{len(positions)} active position(s) exist, skipping position creation")

        pool = self.gateway.pool or self.gateway.load_pool()
        token_balances = self.gateway.token_balances()
        balance_a = token_balances.get(pool.token_a.address)
        balance_b = token_balances.get(pool.token_b.address)

        if balance_a is None or balance_b is None:
            raise PreconditionError(
                f"Missing token balances needed for position "
                f"(has {pool.token_a.symbol}: {balance_a is not None}, has {pool.token_b.symbol}: {balance_b is not None})"
            )

        if balance_a.amount < MIN_TOKEN_AMOUNT or balance_b.amount < MIN_TOKEN_AMOUNT:
            raise PreconditionError(
                f"Insufficient token balances for creating position "
                f"({pool.token_a.symbol}={balance_a.ui_amount}, {pool.token_b.symbol}={balance_b.ui_amount})"
            )

        return pool, balance_a, balance_b

    def create_optimal_position(self) -> Optional[str]:
        """
        Open one position around the current price with 95% of each token balance

        Returns:
            Transaction id, or None when nothing was created
        """
        try:
            pool, balance_a, balance_b = self._check_create_preconditions()
        except PreconditionError as e:
            logger.info(str(e))
            return None
        except Exception as e:
            logger.error(f"Failed to create position: {e}")
            self._report_error(e, 'Creating optimal position')
            return None

        amount_a, amount_b = calculate_position_amounts(balance_a.amount, balance_b.amount)

        try:
            current_price = self.gateway.current_price()
            lower_price, upper_price = calculate_price_range(current_price, self.config.PRICE_RANGE_PERCENT)

            display_a = UniswapV3Utils.format_token_amount(amount_a, balance_a.decimals, pool.token_a.symbol)
            display_b = UniswapV3Utils.format_token_amount(amount_b, balance_b.decimals, pool.token_b.symbol)
            logger.info(f"Creating position: {display_a} + {display_b}, "
                        f"range {lower_price:.6f} - {upper_price:.6f} (price {current_price:.6f})")

            tx_id = self.gateway.open_position(lower_price, upper_price, amount_a, amount_b)
        except Exception as e:
            logger.error(f"Failed to create position: {e}")
            self._report_error(e, 'Creating optimal position')
            return None

        logger.info(f"Position created: {tx_id}")
        self.alert_manager.send_position_update('Created', {
            'TxId': tx_id,
            'CurrentPrice': f"{current_price:.6f}",
            'PriceRange': f"{lower_price:.6f} - {upper_price:.6f}",
            'TokenA': display_a,
            'TokenB': display_b,
        })
        return tx_id

    def withdraw_out_of_range_positions(self) -> List[str]:
        """
        Close every out-of-range position, one at a time

        The first failure stops the loop; the ids of the withdrawals that did
        complete are still returned.

        Returns:
            Transaction ids of completed withdrawals
        """
        tx_ids = []
        try:
            positions = self.gateway.list_positions()
        except Exception as e:
            logger.error(f"Failed to read positions for withdrawal: {e}")
            self._report_error(e, 'Withdrawing out-of-range positions')
            return tx_ids

        out_of_range = [position for position in positions if not position.in_range]
        if not out_of_range:
            logger.info("No out-of-range positions to withdraw")
            return tx_ids

        for position in out_of_range:
            logger.info(f"Withdrawing out-of-range position {position.position_id}: "
                        f"price {position.current_price:.6f}, "
                        f"range {position.lower_price:.6f} - {position.upper_price:.6f}")
            try:
                tx_id = self.gateway.close_position(position.position_id)
            except Exception as e:
                logger.error(f"Failed to withdraw position {position.position_id}: {e}")
                self._report_error(e, 'Withdrawing out-of-range positions', positionId=position.position_id)
                break

            tx_ids.append(tx_id)
            logger.info(f"Position withdrawn: {position.position_id} ({tx_id})")
            self.alert_manager.send_position_update('Withdrawn', {
                'PositionID': position.position_id,
                'TxId': tx_id,
            })

        return tx_ids

    def rebalance_if_needed(self) -> bool:
        """
        Recreate the position if none exists or the current one left its range

        Never raises.

        Returns:
            True iff a new position was created
        """
        try:
            positions = self.gateway.list_positions()

            if not positions:
                return self.create_optimal_position() is not None

            if not any(not position.in_range for position in positions):
                logger.info("All positions in range, nothing to rebalance")
                return False

            withdrawn = self.withdraw_out_of_range_positions()
            if not withdrawn:
                logger.warning("No positions were withdrawn, skipping position creation")
                return False

            logger.info(f"Waiting {SETTLE_DELAY_SECONDS}s for withdrawals to settle")
            self.sleep(SETTLE_DELAY_SECONDS)
            created = self.create_optimal_position() is not None
            if created:
                self.alert_manager.send_position_update('Rebalanced', {
                    'Withdrawn': len(withdrawn),
                    'WithdrawTxIds': withdrawn,
                })
            return created
        except Exception as e:
            logger.error(f"Failed to rebalance positions: {e}")
            self._report_error(e, 'Rebalancing positions')
            return False
