#!/usr/bin/env python3
"""
Main script: loads a web server access log into the database with a configurable
loader strategy, then records the IPs that made more requests than a threshold
within an hourly or daily window into the blocked_ips table.

Example:
    access-log-blocker --access-log access.log --start-date 2017-01-01.13:00:00 \\
        --duration hourly --threshold 100
"""
import argparse
import logging
import os
import sys
import time

import psutil
import pyarrow as pa
import pyarrow.parquet as pq

from blocked_recorder import BlockedIPRecorder
from config import (
    DB_HOST_DEFAULT, DB_NAME_DEFAULT, DB_PASSWORD_DEFAULT, DB_PORT_DEFAULT,
    DB_USER_DEFAULT, build_config, resolve_database_url,
)
from errors import ConfigError, ParserError
from loaders import DEFAULT_LOADER_STRATEGY, LOADER_STRATEGIES, get_loader
from log_parser import format_timestamp
from log_store import LogStore
from threshold_analyzer import DURATIONS, build_reason, compute_window, find_offenders

# Logging configuration
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2

logger = logging.getLogger('botstats.main')


def setup_logging(log_file=None, log_level=logging.INFO):
    """
    Configure the logging system.

    Args:
        log_file (str, optional): Path to the log file
        log_level (int): Logging level

    Returns:
        list: The handlers created, to be passed to teardown_logging at exit.
    """
    handlers = []

    # Always add console handler
    console = logging.StreamHandler()
    console.setLevel(log_level)
    console.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    handlers.append(console)

    # Add file handler if specified
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers
    )
    return handlers


def teardown_logging(handlers):
    """Flushes, detaches and closes the handlers installed by setup_logging."""
    root = logging.getLogger()
    for handler in handlers:
        handler.flush()
        root.removeHandler(handler)
        handler.close()


def build_arg_parser():
    parser = argparse.ArgumentParser(
        prog='access-log-blocker',
        description='Loads an access log into the database and blocks IPs exceeding a request threshold.',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter  # Show defaults in help
    )
    # --- Input Args ---
    parser.add_argument(
        '--access-log', '--accesslog', dest='access_log',
        help='Access log file path (required unless --inspect-ip is used).'
    )
    parser.add_argument(
        '--start-date', '--startDate', dest='start_date',
        help='Starting date. Format: yyyy-MM-dd.HH:mm:ss.'
    )
    parser.add_argument(
        '--duration', choices=list(DURATIONS),
        help='Duration from the start date.'
    )
    parser.add_argument(
        '--threshold', type=int,
        help='Number of requests an IP must exceed within the window to be blocked.'
    )
    parser.add_argument(
        '--loader-strategy', '--loaderStrategy', dest='loader_strategy',
        choices=list(LOADER_STRATEGIES), default=DEFAULT_LOADER_STRATEGY,
        help='Log entries loader strategy.'
    )
    # --- Database Args ---
    parser.add_argument('--db-host', '--dbHost', dest='db_host', default=DB_HOST_DEFAULT, help='Database host.')
    parser.add_argument('--db-port', '--dbPort', dest='db_port', type=int, default=DB_PORT_DEFAULT, help='Database port.')
    parser.add_argument('--db-user', '--dbUser', dest='db_user', default=DB_USER_DEFAULT, help='Database user.')
    parser.add_argument('--db-password', '--dbPassword', dest='db_password', default=DB_PASSWORD_DEFAULT, help='Database password.')
    parser.add_argument('--db-name', dest='db_name', default=DB_NAME_DEFAULT, help='Database (schema) name.')
    parser.add_argument(
        '--db-url', dest='db_url',
        help='Full SQLAlchemy database URL; overrides the other --db-* options (e.g. sqlite:///parser.db).'
    )
    parser.add_argument(
        '--init-schema', action='store_true',
        help='Create the log_entries and blocked_ips tables if they do not exist.'
    )
    # --- Utility Args ---
    parser.add_argument(
        '--inspect-ip', metavar='IP',
        help='List the stored requests of this IP (from the last run) and exit.'
    )
    parser.add_argument(
        '--dump-blocked', metavar='FILE',
        help='Write the blocked IPs of this run to a Parquet file.'
    )
    # --- Output Args ---
    parser.add_argument('--log-file', help='File to save execution logs.')
    parser.add_argument(
        '--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], default='INFO',
        help='Log detail level.'
    )
    parser.add_argument('--version', action='version', version='%(prog)s 1.0')
    return parser


def _rss_bytes():
    return psutil.Process(os.getpid()).memory_info().rss


def load_entries(store, loader, access_log):
    """
    Load phase: runs the loader in its own transaction scope and profiles it.

    Returns:
        int: Loaded entry count.
    """
    logger.info(f"Loading log entries with the '{loader.name}' strategy...")
    rss_before = _rss_bytes()
    started = time.perf_counter()

    with store.transaction():
        loaded_count = loader.load(store, access_log)

    elapsed = time.perf_counter() - started
    rss_delta_mb = (_rss_bytes() - rss_before) / (1024 * 1024)
    logger.info(f"{loaded_count} log entries were loaded in {elapsed:.3f}s (RSS delta: {rss_delta_mb:+.1f} MB)")
    return loaded_count


def record_blocked_ips(store, config):
    """
    Record phase: selects the IPs over the threshold and stores them in one transaction scope.

    Returns:
        list[BlockedEntry]: Entries recorded in blocked_ips.
    """
    window = compute_window(config.start_date, config.duration)
    reason = build_reason(config.duration)
    recorder = BlockedIPRecorder(store, config.threshold)

    with store.transaction():
        return recorder.record(find_offenders(store, window, config.threshold), reason)


def run(config, init_schema=False):
    """
    Runs one full load-then-block cycle.

    Tables are truncated first. The load phase and the record phase commit
    separately: a failure while recording leaves the loaded entries committed.

    Args:
        config (RunConfig): Validated run configuration.
        init_schema (bool): Create missing tables before truncating.

    Returns:
        list[BlockedEntry]: Entries recorded in blocked_ips.
    """
    loader = get_loader(config.loader_strategy)

    with LogStore(config.database_url()) as store:
        with store.transaction():
            if init_schema:
                store.create_schema()
            # Deletes previously stored data from the tables, if any
            store.truncate()

        load_entries(store, loader, config.access_log)
        return record_blocked_ips(store, config)


def inspect_ip(url, ip):
    """Logs the stored requests of one IP, oldest first. Returns the row count."""
    with LogStore(url) as store:
        with store.transaction():
            rows = store.requests_for_ip(ip)
    if not rows:
        logger.info(f"No stored requests for {ip}")
    for date, request, status, user_agent in rows:
        logger.info(f"{format_timestamp(date)} | {status} | {request} | {user_agent}")
    logger.info(f"{len(rows)} request(s) stored for {ip}")
    return len(rows)


def dump_blocked_entries(entries, dump_filepath):
    """Writes blocked entries to a Parquet file with pyarrow."""
    table = pa.table({
        'ip': pa.array([e.ip for e in entries], type=pa.string()),
        'request_count': pa.array([e.request_count for e in entries], type=pa.int32()),
        'reason': pa.array([e.reason for e in entries], type=pa.string()),
    })
    pq.write_table(table, dump_filepath)
    logger.info(f"Dumped {len(entries)} blocked entries to {dump_filepath}")


def main(argv=None):
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    # --- Logging Setup ---
    log_handlers = setup_logging(args.log_file, getattr(logging, args.log_level))

    try:
        # --- Inspect Mode ---
        if args.inspect_ip:
            url = resolve_database_url(args.db_url, args.db_host, args.db_port,
                                       args.db_user, args.db_password, args.db_name)
            inspect_ip(url, args.inspect_ip)
            return EXIT_OK

        config = build_config(args)
        logger.info(f"Using loader strategy: {config.loader_strategy}")

        blocked = run(config, init_schema=args.init_schema)

        if args.dump_blocked:
            dump_blocked_entries(blocked, args.dump_blocked)
        return EXIT_OK

    except ConfigError as e:
        logger.error(str(e))
        return EXIT_CONFIG_ERROR
    except (ParserError, OSError) as e:
        logger.error(str(e))
        return EXIT_FAILURE
    finally:
        teardown_logging(log_handlers)


if __name__ == '__main__':
    sys.exit(main())
