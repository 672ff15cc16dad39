"""
RepairX job lifecycle - SLA escalation sweeper.

Periodically checks every open job against its state's timeout and notifies
the state's escalation role. Escalation never changes job state.

Runs until a limit is reached or SIGINT/SIGTERM is received:
    python main.py --interval-seconds 300
    python main.py --once
"""

import argparse
import logging
import signal
import time
from dataclasses import replace
from typing import Optional

from dotenv import load_dotenv

from src.infra.config import LifecycleSettings
from src.infra.logging_config import LOGGER_NAME, setup_logging
from src.lifecycle.service import JobLifecycleService


logger = logging.getLogger(LOGGER_NAME)

# Graceful shutdown support
shutdown_requested = False


# Load environment variables
load_dotenv()


def signal_handler(signum, frame):
    """
    SIGINT / SIGTERM handler - finish the current sweep, then exit.
    """
    global shutdown_requested
    signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
    logger.info(f"{signal_name} received - stopping after the current sweep")
    shutdown_requested = True


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="RepairX SLA escalation sweeper"
    )
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=300,
        help="Seconds between sweeps. Default=300"
    )
    parser.add_argument(
        "--duration-seconds",
        type=int,
        default=None,
        help="Stop after this many seconds. Default=unlimited"
    )
    parser.add_argument(
        "--max-sweeps",
        type=int,
        default=None,
        help="Stop after this many sweeps. Default=unlimited"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run a single sweep and exit (same as --max-sweeps 1)"
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="SQLite job database. Default=REPAIRX_DB_PATH or ./data/repairx_jobs.db"
    )
    return parser.parse_args(argv)


def run_sweep(service: JobLifecycleService) -> int:
    """
    Escalate every overdue job once.

    Returns:
        Number of escalation notifications dispatched
    """
    intents = service.escalate_overdue_jobs()
    return len(intents)


def main(argv: Optional[list] = None) -> None:
    """
    Main entry point.

    - CLI arguments: --interval-seconds, --duration-seconds, --max-sweeps, --once
    - Graceful shutdown: SIGINT/SIGTERM
    - Statistics: sweeps run, escalations sent, notification delivery
    """
    global shutdown_requested

    args = parse_args(argv)
    if args.once:
        args.max_sweeps = 1

    settings = LifecycleSettings.from_env()
    if args.db_path:
        settings = replace(settings, db_path=args.db_path)

    setup_logging(settings.log_level, settings.log_dir)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    service = JobLifecycleService.create(settings)

    logger.info("=" * 80)
    logger.info("SLA escalation sweeper started")
    logger.info(f"  - Database: {settings.db_path}")
    logger.info(f"  - Interval: {args.interval_seconds}s")
    logger.info(f"  - Max duration: {args.duration_seconds}s" if args.duration_seconds else "  - Max duration: unlimited")
    logger.info(f"  - Max sweeps: {args.max_sweeps}" if args.max_sweeps else "  - Max sweeps: unlimited")
    logger.info("=" * 80)

    start_time = time.time()
    sweeps = 0
    escalations = 0

    try:
        while True:
            if shutdown_requested:
                logger.info("Shutdown requested - leaving loop")
                break

            if args.duration_seconds:
                elapsed = time.time() - start_time
                if elapsed >= args.duration_seconds:
                    logger.info(f"Duration limit reached ({elapsed:.1f}s) - leaving loop")
                    break

            if args.max_sweeps and sweeps >= args.max_sweeps:
                logger.info(f"Sweep limit reached ({sweeps}) - leaving loop")
                break

            sent = run_sweep(service)
            sweeps += 1
            escalations += sent
            logger.info(f"[{sweeps}] Sweep finished - {sent} escalation(s)")

            if args.max_sweeps and sweeps >= args.max_sweeps:
                continue

            # Sleep in one-second steps so a signal is noticed quickly
            for _ in range(args.interval_seconds):
                if shutdown_requested:
                    break
                time.sleep(1)

    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received - shutting down")
    except Exception as e:
        logger.error(f"Sweeper failed: {str(e)}", exc_info=True)
        raise
    finally:
        service.dispatcher.flush(timeout=settings.notify_timeout)
        stats = service.dispatcher.get_stats()
        total_duration = time.time() - start_time

        logger.info("=" * 80)
        logger.info("Sweeper finished - final statistics")
        logger.info(f"Total run time: {total_duration:.1f}s")
        logger.info(f"Sweeps: {sweeps}")
        logger.info(f"Escalations: {escalations}")
        logger.info(
            f"Notifications: delivered={stats['delivered']}, failed={stats['failed']}, "
            f"retried={stats['retried']}"
        )
        logger.info("=" * 80)


if __name__ == "__main__":
    main()
