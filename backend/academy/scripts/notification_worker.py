from __future__ import annotations

import argparse
import logging
import time

from academy.core.logging import configure_logging
from academy.core.settings import settings
from academy.db.session import SessionLocal
from academy.services.alimtalk_client import AlimtalkClient
from academy.services.queue_worker import process_notification_queue
from academy.services.rate_limit import GatewayRateLimiter, SqlCounterStore


logger = logging.getLogger("notification_worker")


def main() -> None:
    parser = argparse.ArgumentParser(description="Deliver pending AlimTalk notifications and retry failed ones.")
    parser.add_argument("--once", action="store_true", help="Run one sweep and exit.")
    parser.add_argument("--interval", type=int, default=30, help="Polling interval in seconds.")
    parser.add_argument("--limit", type=int, default=settings.alimtalk_batch_size, help="Max queue entries per sweep.")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.alimtalk_worker_concurrency,
        help="Parallel deliveries per sweep.",
    )
    args = parser.parse_args()

    configure_logging(level=settings.log_level)

    gateway = AlimtalkClient()
    rate_limiter = GatewayRateLimiter(
        SqlCounterStore(SessionLocal),
        limit=settings.alimtalk_rate_limit_per_minute,
    )
    if not settings.alimtalk_configured:
        logger.warning("KAKAO_API_KEY or KAKAO_USER_ID not configured; sends will fail with CONFIG_MISSING")

    while True:
        result = process_notification_queue(
            SessionLocal,
            gateway=gateway,
            rate_limiter=rate_limiter,
            batch_size=args.limit,
            max_workers=args.concurrency,
        )
        if args.once:
            break
        # Rate-limited entries come back as skipped; back off instead of spinning.
        if result.processed == result.skipped:
            time.sleep(args.interval)


if __name__ == "__main__":
    main()
