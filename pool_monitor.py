"""
Pool monitors for ClmmLP.
Observe price drift, position ranges and wallet balances once per iteration.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from alert_manager import Severity
from uniswap_client import Position, TokenBalance

logger = logging.getLogger(__name__)


@dataclass
class PriceSample:
    """One price observation and its drift from the previous one"""
    current_price: float
    previous_price: Optional[float] = None
    percent_change: Optional[float] = None
    significant_change: bool = False


@dataclass
class PositionSummary:
    """Open positions classified against one price"""
    count: int
    out_of_range_count: int
    positions: List[Position] = field(default_factory=list)

    @property
    def in_range_count(self) -> int:
        return self.count - self.out_of_range_count


@dataclass
class BalanceSnapshot:
    """Wallet balances read in one iteration"""
    native_balance: float
    token_balances: Dict[str, TokenBalance] = field(default_factory=dict)


def compute_price_sample(current_price: float, previous_price: Optional[float], threshold: float) -> PriceSample:
    """
    Compare a new price against the previous one

    Args:
        current_price: Newly observed price
        previous_price: Price from the previous observation, if any
        threshold: Fractional change above which the move is significant (0.01 = 1%)

    Returns:
        PriceSample with percent_change as a fraction
    """
    if previous_price is None:
        return PriceSample(current_price=current_price)

    percent_change = abs(current_price - previous_price) / previous_price
    return PriceSample(
        current_price=current_price,
        previous_price=previous_price,
        percent_change=percent_change,
        significant_change=percent_change > threshold
    )


def classify_positions(positions: List[Position], current_price: float) -> PositionSummary:
    """Classify every position against the same price"""
    classified = [replace(position, current_price=current_price) for position in positions]
    out_of_range = sum(1 for position in classified if not position.in_range)
    return PositionSummary(count=len(classified), out_of_range_count=out_of_range, positions=classified)


class PriceMonitor:
    """Tracks the last observed pool price"""

    def __init__(self, gateway, config):
        """
        Args:
            gateway: Pool gateway exposing current_price()
            config: Configuration object
        """
        self.gateway = gateway
        self.threshold = config.REBALANCE_THRESHOLD_PERCENT / 100
        self.last_price: Optional[float] = None
        logger.info(f"Price monitor initialized with {config.REBALANCE_THRESHOLD_PERCENT}% price change threshold")

    def observe_price(self) -> PriceSample:
        """
        Read the pool price and compare it with the previous observation

        Raises:
            GatewayError: if the pool cannot be read
        """
        current_price = self.gateway.current_price()
        sample = compute_price_sample(current_price, self.last_price, self.threshold)

        if sample.significant_change:
            logger.info(f"Significant price change detected: {sample.previous_price:.6f} -> {current_price:.6f} "
                        f"({sample.percent_change * 100:.2f}% > {self.threshold * 100:.2f}%)")

        self.last_price = current_price
        return sample


class PositionMonitor:
    """Classifies open positions as in or out of range"""

    def __init__(self, gateway):
        self.gateway = gateway

    def observe_positions(self, current_price: Optional[float] = None) -> PositionSummary:
        """
        Read open positions and classify them

        Args:
            current_price: Price observed in this iteration; read fresh when omitted

        Raises:
            GatewayError: if positions or price cannot be read
        """
        positions = self.gateway.list_positions()
        if current_price is None:
            current_price = self.gateway.current_price()

        summary = classify_positions(positions, current_price)
        logger.info(f"Position status: total={summary.count}, in_range={summary.in_range_count}, "
                    f"out_of_range={summary.out_of_range_count}")
        return summary


class BalanceMonitor:
    """Reads wallet balances and warns when gas money runs low"""

    def __init__(self, gateway, alert_manager, config):
        self.gateway = gateway
        self.alert_manager = alert_manager
        self.min_native_balance = config.MIN_NATIVE_BALANCE
        self.native_symbol = config.NATIVE_SYMBOL

    def _symbol_for(self, mint: str) -> str:
        pool = getattr(self.gateway, 'pool', None)
        if pool is not None:
            for token in (pool.token_a, pool.token_b):
                if token.address.lower() == mint.lower():
                    return token.symbol
        return 'Unknown'

    def observe_balances(self) -> BalanceSnapshot:
        """
        Read native and token balances

        Every observation below MIN_NATIVE_BALANCE sends a warning notification.

        Raises:
            GatewayError: if balances cannot be read
        """
        native_balance = self.gateway.native_balance()
        token_balances = self.gateway.token_balances()

        formatted = ", ".join(
            f"{self._symbol_for(mint)}={balance.ui_amount:.6f}" for mint, balance in token_balances.items()
        )
        logger.info(f"Wallet balances: {self.native_symbol}={native_balance:.6f}, {formatted}")

        if native_balance < self.min_native_balance:
            logger.warning(f"{self.native_symbol} balance {native_balance:.6f} below minimum threshold "
                           f"{self.min_native_balance}")
            self.alert_manager.notify(
                f"Low {self.native_symbol} Balance",
                f"Wallet {self.native_symbol} balance ({native_balance:.4f} {self.native_symbol}) is below "
                f"minimum threshold ({self.min_native_balance} {self.native_symbol}).",
                Severity.WARNING,
                {'Balance': f"{native_balance:.6f}", 'Threshold': self.min_native_balance}
            )

        return BalanceSnapshot(native_balance=native_balance, token_balances=token_balances)
