"""
Control loop for ClmmLP.
Runs the monitor -> decide -> rebalance iteration on a fixed interval.
"""
import logging
import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from alert_manager import AlertManager, Severity, create_alert_manager
from config import Config
from lp_position_manager import LPPositionManager
from periodic_trigger import PeriodicTrigger
from pool_monitor import BalanceMonitor, PositionMonitor, PriceMonitor
from strategy import rebalance_reasons, should_rebalance
from uniswap_client import UniswapV3Client

logger = logging.getLogger(__name__)


class BotState(Enum):
    STOPPED = 'stopped'
    INITIALIZING = 'initializing'
    RUNNING = 'running'


@dataclass
class BotContext:
    """Services shared by the control loop, monitors and position manager"""
    config: Any
    gateway: Any
    alert_manager: AlertManager

    @classmethod
    def from_config(cls, config: Config = None) -> 'BotContext':
        """Build the live gateway and notification sinks from configuration"""
        config = config or Config()
        return cls(
            config=config,
            gateway=UniswapV3Client(config),
            alert_manager=create_alert_manager(config)
        )


class LiquidityBot:
    """Keeps one concentrated-liquidity position centred on the pool price"""

    def __init__(self,
                 context: BotContext,
                 trigger_factory: Callable = PeriodicTrigger,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            context: Shared services
            trigger_factory: Builds the recurring timer from (interval_seconds, callback)
            sleep: Function used for the settle delay between withdraw and create
        """
        self.context = context
        self.config = context.config
        self.trigger_factory = trigger_factory

        self.price_monitor = PriceMonitor(context.gateway, context.config)
        self.position_monitor = PositionMonitor(context.gateway)
        self.balance_monitor = BalanceMonitor(context.gateway, context.alert_manager, context.config)
        self.position_manager = LPPositionManager(context.gateway, context.alert_manager, context.config, sleep=sleep)

        self.state = BotState.STOPPED
        self._trigger = None
        self._state_lock = threading.Lock()
        self._iteration_lock = threading.Lock()

        self.iteration_count = 0
        self.last_iteration_started_at: Optional[datetime] = None
        self.last_iteration_finished_at: Optional[datetime] = None
        self.last_price_sample = None
        self.last_position_summary = None
        self.last_balance_snapshot = None

    @property
    def interval_seconds(self) -> float:
        return self.config.CHECK_INTERVAL_MINUTES * 60

    def initialize(self):
        """
        Load pool metadata and announce the start

        Raises:
            Exception: whatever the gateway raised when the pool cannot be resolved
        """
        logger.info("Initializing bot...")
        try:
            pool = self.context.gateway.load_pool()
        except Exception as e:
            logger.error(f"Failed to initialize bot: {e}")
            self.context.alert_manager.send_error_notification(e, {'action': 'Initializing bot'})
            raise

        self.context.alert_manager.notify(
            'Bot Started',
            'Concentrated liquidity bot has been started.',
            Severity.INFO,
            {
                'Pool': pool.address,
                'Pair': pool.pair,
                'Price Range': f"{self.config.PRICE_RANGE_PERCENT}%",
                'Rebalance Threshold': f"{self.config.REBALANCE_THRESHOLD_PERCENT}%",
                'Check Interval': f"{self.config.CHECK_INTERVAL_MINUTES} minutes",
            }
        )
        logger.info("Bot initialized successfully")

    def start(self):
        """
        Start the loop and run the first iteration before returning

        Raises:
            Exception: if pool metadata cannot be loaded
        """
        with self._state_lock:
            if self.state != BotState.STOPPED:
                logger.warning(f"Bot is already {self.state.value}")
                return
            self.state = BotState.INITIALIZING

        try:
            self.initialize()
            with self._state_lock:
                self._trigger = self.trigger_factory(self.interval_seconds, self._on_tick)
                self._trigger.start()
                self.state = BotState.RUNNING
        except Exception:
            with self._state_lock:
                if self._trigger is not None:
                    self._trigger.cancel()
                    self._trigger = None
                self.state = BotState.STOPPED
            raise

        logger.info(f"Bot started, checking every {self.config.CHECK_INTERVAL_MINUTES} minutes")
        self.run_iteration()

    def stop(self):
        """Stop scheduling iterations; an iteration in flight runs to completion"""
        with self._state_lock:
            if self.state != BotState.RUNNING:
                logger.warning("Bot is not running")
                return
            if self._trigger is not None:
                self._trigger.cancel()
                self._trigger = None
            self.state = BotState.STOPPED

        logger.info("Bot stopped")
        self.context.alert_manager.notify(
            'Bot Stopped',
            'Concentrated liquidity bot has been stopped.',
            Severity.WARNING
        )

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no iteration is in flight

        Args:
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            False if an iteration was still running when the timeout expired
        """
        acquired = self._iteration_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._iteration_lock.release()
        return acquired

    def is_active(self) -> bool:
        return self.state == BotState.RUNNING

    def _on_tick(self):
        if not self.is_active():
            logger.debug("Tick received while not running, ignoring")
            return
        self.run_iteration()

    def run_once(self) -> bool:
        """Load the pool and run a single iteration without arming the timer"""
        self.context.gateway.load_pool()
        return self.run_iteration()

    def run_iteration(self) -> bool:
        """
        Run one monitor -> decide -> rebalance pass

        Returns:
            False if the pass was skipped because another one is still running
        """
        if not self._iteration_lock.acquire(blocking=False):
            logger.warning("Previous iteration still running, skipping this tick")
            return False
        try:
            self._run_iteration()
        finally:
            self._iteration_lock.release()
        return True

    def _run_step(self, action: str, func: Callable, *args):
        try:
            return func(*args)
        except Exception as e:
            logger.error(f"{action} failed: {e}")
            self.context.alert_manager.send_error_notification(e, {'action': action})
            return None

    def _run_iteration(self):
        self.last_iteration_started_at = datetime.now(timezone.utc)
        logger.info("Running bot iteration")

        price_sample = self._run_step('Checking price', self.price_monitor.observe_price)
        current_price = price_sample.current_price if price_sample is not None else None

        position_summary = self._run_step(
            'Checking positions', self.position_monitor.observe_positions, current_price
        )
        balance_snapshot = self._run_step('Checking wallet balances', self.balance_monitor.observe_balances)

        self.last_price_sample = price_sample
        self.last_position_summary = position_summary
        self.last_balance_snapshot = balance_snapshot

        if price_sample is None or position_summary is None:
            logger.warning("Monitor data unavailable, skipping rebalance decision")
        elif should_rebalance(price_sample, position_summary):
            reasons = rebalance_reasons(price_sample, position_summary)
            logger.info(f"Rebalancing due to: {', '.join(reasons)}")
            if self.position_manager.rebalance_if_needed():
                logger.info("Rebalancing completed successfully")
            else:
                logger.info("No rebalancing performed")
        else:
            logger.info("No rebalancing needed")

        self.iteration_count += 1
        self.last_iteration_finished_at = datetime.now(timezone.utc)
        logger.info("Bot iteration completed")

    def get_status(self) -> Dict[str, Any]:
        """Current state plus the snapshots from the latest iteration when running"""
        active = self.is_active()

        def snapshot(value):
            return asdict(value) if active and value is not None else None

        def timestamp(value):
            return value.isoformat() if value is not None else None

        return {
            'is_running': active,
            'state': self.state.value,
            'pool': self.config.POOL_ADDRESS,
            'iteration_count': self.iteration_count,
            'last_iteration_started_at': timestamp(self.last_iteration_started_at),
            'last_iteration_finished_at': timestamp(self.last_iteration_finished_at),
            'price': snapshot(self.last_price_sample),
            'positions': snapshot(self.last_position_summary),
            'balances': snapshot(self.last_balance_snapshot),
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
