#!/usr/bin/env python3
"""
Run configuration resolved from the command line.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from errors import ConfigError
from loaders import DEFAULT_LOADER_STRATEGY, LOADER_STRATEGIES
from threshold_analyzer import DURATIONS, parse_start_date

DB_DRIVER = 'mysql+pymysql'
DB_HOST_DEFAULT = 'localhost'
DB_PORT_DEFAULT = 3306
DB_USER_DEFAULT = 'parser'
DB_PASSWORD_DEFAULT = 'parser'
DB_NAME_DEFAULT = 'parser'


@dataclass
class RunConfig:
    access_log: str
    start_date: datetime
    duration: str
    threshold: int
    loader_strategy: str = DEFAULT_LOADER_STRATEGY
    db_host: str = DB_HOST_DEFAULT
    db_port: int = DB_PORT_DEFAULT
    db_user: str = DB_USER_DEFAULT
    db_password: str = DB_PASSWORD_DEFAULT
    db_name: str = DB_NAME_DEFAULT
    db_url: Optional[str] = None

    def database_url(self) -> URL:
        """Explicit --db-url if given, otherwise a MySQL URL built from the connection parameters."""
        return resolve_database_url(self.db_url, self.db_host, self.db_port,
                                    self.db_user, self.db_password, self.db_name)


def resolve_database_url(db_url=None, db_host=DB_HOST_DEFAULT, db_port=DB_PORT_DEFAULT,
                         db_user=DB_USER_DEFAULT, db_password=DB_PASSWORD_DEFAULT,
                         db_name=DB_NAME_DEFAULT) -> URL:
    """Validates the connection parameters and returns the URL to connect to."""
    try:
        db_port = int(db_port)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid database port {db_port}") from None
    if not 0 < db_port < 65536:
        raise ConfigError(f"Invalid database port {db_port}")
    if db_url:
        try:
            return make_url(db_url)
        except ArgumentError:
            raise ConfigError(f"Invalid database URL '{db_url}'") from None
    return URL.create(DB_DRIVER, username=db_user, password=db_password,
                      host=db_host, port=db_port, database=db_name)


def build_config(args) -> RunConfig:
    """
    Validates an argparse namespace and turns it into a RunConfig.

    Raises:
        ConfigError: Missing or invalid parameter.
    """
    missing = [option for option, value in (
        ('--access-log', args.access_log),
        ('--start-date', args.start_date),
        ('--duration', args.duration),
        ('--threshold', args.threshold),
    ) if value is None]
    if missing:
        raise ConfigError(f"The following arguments are required: {', '.join(missing)}")

    if args.duration not in DURATIONS:
        raise ConfigError(f"Invalid duration '{args.duration}'. Possible values: {', '.join(DURATIONS)}")
    if args.threshold <= 0:
        raise ConfigError(f"Threshold must be a positive integer, got {args.threshold}")
    if args.loader_strategy not in LOADER_STRATEGIES:
        raise ConfigError(f"Unknown loader strategy '{args.loader_strategy}'. "
                          f"Possible values: {', '.join(LOADER_STRATEGIES)}")

    # Fails early on a bad port or URL
    resolve_database_url(args.db_url, args.db_host, args.db_port, args.db_user, args.db_password, args.db_name)

    return RunConfig(
        access_log=args.access_log,
        start_date=parse_start_date(args.start_date),
        duration=args.duration,
        threshold=args.threshold,
        loader_strategy=args.loader_strategy,
        db_host=args.db_host,
        db_port=int(args.db_port),
        db_user=args.db_user,
        db_password=args.db_password,
        db_name=args.db_name,
        db_url=args.db_url,
    )
