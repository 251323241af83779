"""Run the scheduler loop and an in-process worker pool without Celery.

Usage:
    python -m grantwatch.worker
    python -m grantwatch.worker --once --workers 2
"""

import argparse
import logging
import signal
import threading

from grantwatch.config import get_settings
from grantwatch.core.scheduler import Scheduler
from grantwatch.core.worker_pool import WorkerPool
from grantwatch.models.base import SessionLocal

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Grantwatch scheduler and worker pool")
    parser.add_argument("--once", action="store_true", help="Run a single tick, wait for its jobs, then exit")
    parser.add_argument("--workers", type=int, default=None, help="Pool size (default: MAX_CONCURRENT_JOBS)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    settings = get_settings()

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop_event.set())
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    db = SessionLocal()
    try:
        with WorkerPool(size=args.workers, settings=settings) as pool:
            scheduler = Scheduler(db, settings, dispatch=pool)
            if args.once:
                scheduler.reconcile_stale_jobs()
                result = scheduler.tick()
                logger.info(f"Dispatched {len(result.created)} jobs, waiting for them to finish")
            else:
                scheduler.run_forever(stop_event)
    finally:
        db.close()


if __name__ == "__main__":
    main()
