"""
Unit tests for the price, position and balance monitors.
"""
import pytest
import sys
import os
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from alert_manager import Severity
from pool_monitor import (
    PriceMonitor,
    PositionMonitor,
    BalanceMonitor,
    compute_price_sample,
    classify_positions,
)
from uniswap_client import PoolInfo, Position, TokenBalance, TokenInfo
from utils import GatewayError

TOKEN_A = TokenInfo(address='0xA', symbol='WETH', decimals=18)
TOKEN_B = TokenInfo(address='0xB', symbol='USDC', decimals=6)
POOL = PoolInfo(address='0xPool', token_a=TOKEN_A, token_b=TOKEN_B, fee=500, tick_spacing=10)


def make_position(position_id: str, lower: float, upper: float, current: float = 0.0) -> Position:
    return Position(
        position_id=position_id,
        token_a=TOKEN_A,
        token_b=TOKEN_B,
        liquidity=10 ** 12,
        lower_price=lower,
        upper_price=upper,
        current_price=current
    )


class TestComputePriceSample:
    """Test the drift computation."""

    def test_first_sample_has_no_change(self):
        """Without a previous price the change is undefined and not significant."""
        sample = compute_price_sample(2000.0, None, 0.01)

        assert sample.current_price == 2000.0
        assert sample.previous_price is None
        assert sample.percent_change is None
        assert sample.significant_change is False

    @pytest.mark.parametrize("previous,current,threshold", [
        (100.0, 102.0, 0.01),
        (100.0, 99.5, 0.01),
        (2000.0, 1800.0, 0.05),
        (2000.0, 2200.0, 0.2),
        (0.5, 0.55, 0.0),
        (3.0, 3.0, 0.0),
    ])
    def test_significant_change_formula(self, previous, current, threshold):
        """significant_change == |current - previous| / previous > threshold."""
        sample = compute_price_sample(current, previous, threshold)

        expected_change = abs(current - previous) / previous
        assert sample.percent_change == pytest.approx(expected_change)
        assert sample.significant_change is (expected_change > threshold)

    def test_change_equal_to_threshold_is_not_significant(self):
        """The comparison is strict."""
        sample = compute_price_sample(101.0, 100.0, 0.01)

        assert sample.percent_change == pytest.approx(0.01)
        assert sample.significant_change is False


class TestPriceMonitor:
    """Test the stateful price monitor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.gateway = Mock()
        self.config = Mock()
        self.config.REBALANCE_THRESHOLD_PERCENT = 1.0
        self.monitor = PriceMonitor(self.gateway, self.config)

    def test_threshold_is_percent_over_100(self):
        """A 1% config value becomes a 0.01 fraction."""
        assert self.monitor.threshold == pytest.approx(0.01)

    def test_first_call_is_never_significant(self):
        """The first observation only seeds the last price."""
        self.gateway.current_price.return_value = 2000.0

        sample = self.monitor.observe_price()

        assert sample.significant_change is False
        assert sample.percent_change is None
        assert self.monitor.last_price == 2000.0

    def test_compares_against_previous_observation(self):
        """Each sample is compared with the one before it."""
        self.gateway.current_price.side_effect = [2000.0, 2010.0, 2100.0]

        first = self.monitor.observe_price()
        second = self.monitor.observe_price()
        third = self.monitor.observe_price()

        assert first.significant_change is False
        assert second.previous_price == 2000.0
        assert second.significant_change is False  # 0.5%
        assert third.previous_price == 2010.0
        assert third.significant_change is True  # ~4.5%

    def test_last_price_updated_even_when_significant(self):
        """The stored price always moves to the latest observation."""
        self.gateway.current_price.side_effect = [2000.0, 3000.0]

        self.monitor.observe_price()
        sample = self.monitor.observe_price()

        assert sample.significant_change is True
        assert self.monitor.last_price == 3000.0

    def test_gateway_error_propagates_and_keeps_state(self):
        """A failed read raises and leaves the last price untouched."""
        self.gateway.current_price.side_effect = [2000.0, GatewayError("rpc down")]

        self.monitor.observe_price()
        with pytest.raises(GatewayError):
            self.monitor.observe_price()

        assert self.monitor.last_price == 2000.0


class TestPositionMonitor:
    """Test position range classification."""

    def setup_method(self):
        """Set up test fixtures."""
        self.gateway = Mock()
        self.monitor = PositionMonitor(self.gateway)

    @pytest.mark.parametrize("lower,upper,price,expected", [
        (1900.0, 2100.0, 2000.0, True),
        (1900.0, 2100.0, 1900.0, True),
        (1900.0, 2100.0, 2100.0, True),
        (1900.0, 2100.0, 1899.99, False),
        (1900.0, 2100.0, 2100.01, False),
        (2000.0, 2000.0, 2000.0, True),
    ])
    def test_in_range_formula(self, lower, upper, price, expected):
        """in_range == lower <= current <= upper."""
        summary = classify_positions([make_position('1', lower, upper)], price)

        assert summary.positions[0].in_range is expected
        assert summary.out_of_range_count == (0 if expected else 1)

    def test_uses_iteration_price_for_every_position(self):
        """Positions are classified with the price passed in, not a fresh read."""
        self.gateway.list_positions.return_value = [
            make_position('1', 1900.0, 2100.0, current=5000.0),
            make_position('2', 2200.0, 2400.0, current=5000.0),
        ]

        summary = self.monitor.observe_positions(2000.0)

        self.gateway.current_price.assert_not_called()
        assert summary.count == 2
        assert summary.out_of_range_count == 1
        assert summary.in_range_count == 1
        assert all(position.current_price == 2000.0 for position in summary.positions)

    def test_reads_price_once_when_not_supplied(self):
        """Without an iteration price the monitor reads one and reuses it."""
        self.gateway.list_positions.return_value = [
            make_position('1', 1900.0, 2100.0),
            make_position('2', 1950.0, 2050.0),
        ]
        self.gateway.current_price.return_value = 2000.0

        summary = self.monitor.observe_positions()

        self.gateway.current_price.assert_called_once()
        assert summary.out_of_range_count == 0

    def test_no_positions(self):
        """An empty wallet yields a zero summary."""
        self.gateway.list_positions.return_value = []

        summary = self.monitor.observe_positions(2000.0)

        assert summary.count == 0
        assert summary.out_of_range_count == 0
        assert summary.positions == []

    def test_gateway_error_propagates(self):
        """Read failures are not swallowed by the monitor."""
        self.gateway.list_positions.side_effect = GatewayError("rpc down")

        with pytest.raises(GatewayError):
            self.monitor.observe_positions(2000.0)


class TestBalanceMonitor:
    """Test wallet balance observation and low balance alerts."""

    def setup_method(self):
        """Set up test fixtures."""
        self.gateway = Mock()
        self.gateway.pool = POOL
        self.gateway.token_balances.return_value = {
            '0xA': TokenBalance(mint='0xA', amount=10 ** 18, decimals=18, ui_amount=1.0),
            '0xB': TokenBalance(mint='0xB', amount=2000 * 10 ** 6, decimals=6, ui_amount=2000.0),
        }
        self.alert_manager = Mock()
        self.config = Mock()
        self.config.MIN_NATIVE_BALANCE = 0.05
        self.config.NATIVE_SYMBOL = 'ETH'
        self.monitor = BalanceMonitor(self.gateway, self.alert_manager, self.config)

    def test_snapshot_contains_balances(self):
        """Native and token balances are returned as read."""
        self.gateway.native_balance.return_value = 1.5

        snapshot = self.monitor.observe_balances()

        assert snapshot.native_balance == 1.5
        assert snapshot.token_balances['0xB'].amount == 2000 * 10 ** 6
        self.alert_manager.notify.assert_not_called()

    def test_low_balance_sends_warning(self):
        """A balance under the floor sends one warning."""
        self.gateway.native_balance.return_value = 0.01

        self.monitor.observe_balances()

        self.alert_manager.notify.assert_called_once()
        args = self.alert_manager.notify.call_args[0]
        assert args[0] == 'Low ETH Balance'
        assert args[2] == Severity.WARNING

    def test_low_balance_notifies_every_observation(self):
        """Alerts are not deduplicated across iterations."""
        self.gateway.native_balance.return_value = 0.01

        for _ in range(3):
            self.monitor.observe_balances()

        assert self.alert_manager.notify.call_count == 3

    def test_balance_at_floor_is_not_low(self):
        """Only balances strictly below the minimum alert."""
        self.gateway.native_balance.return_value = 0.05

        self.monitor.observe_balances()

        self.alert_manager.notify.assert_not_called()

    def test_gateway_error_propagates(self):
        """Read failures raise without alerting about the balance."""
        self.gateway.native_balance.side_effect = GatewayError("rpc down")

        with pytest.raises(GatewayError):
            self.monitor.observe_balances()

        self.alert_manager.notify.assert_not_called()


if __name__ == "__main__":
    pytest.main([__file__])
