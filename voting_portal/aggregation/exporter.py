"""
Results exporter service.

Periodically tallies the vote ledger and publishes the totals as Prometheus
gauges for dashboards.
"""
import asyncio
import logging
import signal
import sys
import time

from prometheus_client import Counter, Gauge, start_http_server

from voting_portal.shared.database import Database
from voting_portal.shared.errors import StorageError
from voting_portal.shared.models import PositionNormalizer
from voting_portal.shared.store import VoteStore
from .aggregator import ResultsAggregator
from .config import config

logger = logging.getLogger(__name__)

# Prometheus metrics
current_vote_totals = Gauge(
    'current_vote_totals',
    'Current vote totals',
    ['position', 'candidate']
)

voters_completed = Gauge(
    'voters_completed',
    'Voters who have voted in every position'
)

sync_duration = Gauge(
    'results_sync_duration_seconds',
    'Time taken to tally and publish results'
)

exporter_errors = Counter(
    'results_exporter_errors_total',
    'Total number of exporter errors',
    ['error_type']
)


class ResultsExporter:
    """Polls the store and mirrors tallies into Prometheus gauges."""

    def __init__(self, store: VoteStore, normalize: PositionNormalizer, interval: float):
        self.store = store
        self.aggregator = ResultsAggregator(store, normalize)
        self.interval = interval
        self.running = True

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False

    def install_signal_handlers(self):
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    async def sync_once(self) -> int:
        """
        Tally once and update the gauges.

        Returns:
            int: Number of candidate series published
        """
        start = time.time()
        results = await self.aggregator.tally()

        published = 0
        for tally in results.values():
            for entry in tally.candidates:
                current_vote_totals.labels(
                    position=tally.position,
                    candidate=entry.candidate.full_name
                ).set(entry.votes)
                published += 1

        voters_completed.set(await self.aggregator.completed_voters())
        sync_duration.set(time.time() - start)

        logger.debug(f"Published {published} candidate totals across {len(results)} positions")
        return published

    async def run(self):
        """Sync until a shutdown signal arrives."""
        while self.running:
            try:
                await self.sync_once()
            except StorageError as e:
                logger.error(f"Storage error syncing results: {e}")
                exporter_errors.labels(error_type='storage').inc()
            except Exception as e:
                logger.error(f"Unexpected error syncing results: {e}", exc_info=True)
                exporter_errors.labels(error_type='unexpected').inc()

            await self._sleep()

    async def _sleep(self):
        # Wake up regularly so a shutdown signal is honoured promptly
        deadline = time.time() + self.interval
        while self.running and time.time() < deadline:
            await asyncio.sleep(min(0.5, self.interval))


async def main():
    """Main entry point."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger.info("=" * 60)
    logger.info("Starting Results Exporter")
    logger.info(f"PostgreSQL: {config.POSTGRES_HOST}:{config.POSTGRES_PORT}")
    logger.info(f"Poll Interval: {config.POLL_INTERVAL_SECONDS}s")
    logger.info("=" * 60)

    database = Database(
        config.get_postgres_dsn(),
        min_size=config.POSTGRES_MIN_CONNECTIONS,
        max_size=config.POSTGRES_MAX_CONNECTIONS
    )
    normalize = PositionNormalizer(
        case_fold=config.POSITION_CASE_FOLD,
        trim_whitespace=config.POSITION_TRIM_WHITESPACE
    )
    exporter = ResultsExporter(database, normalize, config.POLL_INTERVAL_SECONDS)
    exporter.install_signal_handlers()

    try:
        await database.initialize()

        logger.info(f"Starting Prometheus metrics server on port {config.PROMETHEUS_PORT}")
        start_http_server(config.PROMETHEUS_PORT)

        await exporter.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await database.close()
        logger.info("Results exporter shutdown complete")


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
