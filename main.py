#!/usr/bin/env python3
"""
Main application for the ClmmLP bot.
Wires configuration, logging and the control loop, and handles shutdown signals.
"""
import argparse
import logging
import signal
import sys
import threading

from config import Config
from liquidity_bot import BotContext, LiquidityBot
from utils import Logger

logger = logging.getLogger(__name__)

STATUS_LOG_SECONDS = 300


class BotApp:
    """Host process for the liquidity bot"""

    def __init__(self, config: Config):
        self.config = config
        self.bot = None
        self._shutdown = threading.Event()

    def signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, shutting down gracefully...")
        self._shutdown.set()

    def build_bot(self) -> LiquidityBot:
        self.bot = LiquidityBot(BotContext.from_config(self.config))
        return self.bot

    def run_once(self) -> int:
        """Run a single iteration and exit"""
        bot = self.build_bot()
        bot.run_once()
        return 0

    def run_forever(self) -> int:
        """Start the bot and keep the main thread alive until a signal arrives"""
        signal.signal(signal.SIGINT, self.signal_handler)
        signal.signal(signal.SIGTERM, self.signal_handler)

        bot = self.build_bot()
        logger.info("Starting concentrated liquidity bot")
        logger.info(f"Pool: {self.config.POOL_ADDRESS}")
        logger.info(f"Price range: +/-{self.config.PRICE_RANGE_PERCENT}%")
        logger.info(f"Rebalance threshold: {self.config.REBALANCE_THRESHOLD_PERCENT}%")
        logger.info(f"Check interval: {self.config.CHECK_INTERVAL_MINUTES} minutes")

        bot.start()
        logger.info("Bot is running. Press Ctrl+C to stop.")

        while not self._shutdown.wait(STATUS_LOG_SECONDS):
            status = bot.get_status()
            price = status['price']['current_price'] if status['price'] else None
            positions = status['positions']['count'] if status['positions'] else None
            logger.info(f"Status: running={status['is_running']}, iterations={status['iteration_count']}, "
                        f"last_price={price}, positions={positions}")

        bot.stop()
        if not bot.wait_idle(timeout=0):
            logger.info("Waiting for the running iteration to finish...")
            bot.wait_idle()
        return 0


def main() -> int:
    """Parse arguments and run the bot"""
    parser = argparse.ArgumentParser(
        description='ClmmLP - keeps a Uniswap V3 concentrated liquidity position centred on the pool price',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run continuously
  python main.py

  # Single check, e.g. from cron
  python main.py --once
        """
    )
    parser.add_argument('--once', action='store_true',
                        help='Run a single iteration without starting the timer')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Override LOG_LEVEL')
    args = parser.parse_args()

    config = Config()
    if args.log_level:
        config.LOG_LEVEL = args.log_level
    Logger.setup_logging(level=config.LOG_LEVEL, log_file=config.LOG_FILE)

    try:
        config.validate_config()
        logger.info("✅ Configuration validation passed")
    except ValueError as e:
        logger.error(f"❌ {e}")
        return 1

    app = BotApp(config)
    try:
        if args.once:
            return app.run_once()
        return app.run_forever()
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        if app.bot and app.bot.is_active():
            app.bot.stop()
        return 1
    except Exception as e:
        logger.error(f"Failed to start bot: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
