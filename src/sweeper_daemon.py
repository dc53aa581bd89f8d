"""Sweeper daemon that periodically fires due timers."""

import logging
import signal
import sys
import time

import redis

from main import build_services, get_redis_client
from services.errors import EngineError
from services.log_service import configure_logging, level_from_name
from services.settings import EngineSettings
from services.timer_service import TimerSweeper

logger = logging.getLogger("sweeper_daemon")


class SweeperDaemon:
    """Daemon that runs a timer sweep every interval until stopped."""

    def __init__(self, sweeper: TimerSweeper, sweep_interval: float = 30.0):
        if sweeper is None:
            raise ValueError("sweeper is required")
        if sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")
        self.sweeper = sweeper
        self.sweep_interval = sweep_interval
        self.running = True

    def run_once(self) -> None:
        """One sweep. Errors are logged so the next sweep still runs."""
        try:
            self.sweeper.sweep()
        except (EngineError, redis.RedisError) as e:
            logger.error(f"Error in sweep: {e}")

    def run(self) -> None:
        """Main daemon loop."""
        logger.info(f"Sweeper daemon started, sweeping every {self.sweep_interval}s")

        while self.running:
            started = time.monotonic()
            self.run_once()
            remaining = self.sweep_interval - (time.monotonic() - started)
            # Sleep in short slices so a stop signal is honoured quickly.
            while self.running and remaining > 0:
                time.sleep(min(remaining, 1.0))
                remaining -= 1.0

        logger.info("Sweeper daemon stopped")

    def stop(self) -> None:
        """Signal daemon to stop."""
        self.running = False


def main() -> int:
    settings = EngineSettings.from_env()
    configure_logging(
        "sweeper",
        log_dir=settings.log_dir,
        level=level_from_name(settings.log_level),
    )

    logger.info(f"Connecting to Redis at {settings.redis_url}")
    redis_client = get_redis_client(settings)

    try:
        redis_client.ping()
        logger.info("Redis connection established")
    except redis.ConnectionError as e:
        logger.error(f"Failed to connect to Redis: {e}")
        return 1

    services = build_services(settings, redis_client)
    daemon = SweeperDaemon(services.sweeper, settings.sweep_interval_seconds)

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        daemon.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    daemon.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
