"""Scheduled coupon expiry sweep.

Run once with ``python jobs.py --once`` or keep it looping every
``COUPON_SWEEP_INTERVAL`` seconds.
"""
import argparse
import logging
import os
import time
from datetime import datetime
from typing import Optional

from coupons import sweep_expired_coupons
from database import SessionLocal, atomic, init_db
from errors import TransientStoreError

logger = logging.getLogger(__name__)

COUPON_SWEEP_INTERVAL = int(os.getenv("COUPON_SWEEP_INTERVAL", 3600))


def run_sweep(session_factory=SessionLocal, now: Optional[datetime] = None) -> int:
    with session_factory() as session:
        with atomic(session, "disable expired coupons"):
            count = sweep_expired_coupons(session, now)
    if count > 0:
        logger.info("Disabled %d expired coupons", count)
    else:
        logger.info("No expired coupons found")
    return count


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    p = argparse.ArgumentParser(description="Deactivate coupons whose expiry has passed.")
    p.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    p.add_argument("--interval", type=int, default=COUPON_SWEEP_INTERVAL, help="Seconds between sweeps")
    args = p.parse_args()

    init_db()
    logger.info("Initializing scheduled jobs")
    while True:
        try:
            run_sweep()
        except TransientStoreError:
            logger.error("Coupon sweep failed, retrying in %d seconds", args.interval)
        if args.once:
            break
        time.sleep(args.interval)


if __name__ == "__main__":
    main()
