#!/usr/bin/env python3
"""
Module for the windowed request-threshold analysis run against the entries store.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from errors import ConfigError

# Logger for this module
logger = logging.getLogger('botstats.analyzer')

START_DATE_FORMAT = '%Y-%m-%d.%H:%M:%S'

DURATIONS = {
    'hourly': timedelta(hours=1),
    'daily': timedelta(days=1),
}


@dataclass(frozen=True)
class Window:
    """
    Time interval the requests are counted over.

    Both ends are inclusive (SQL BETWEEN): a request stamped exactly at `end`
    is counted, so two back-to-back windows both count it.
    """
    start: datetime
    end: datetime


def parse_start_date(value):
    """
    Parses a start date given as 'yyyy-MM-dd.HH:mm:ss'.

    Raises:
        ConfigError: The value does not match the pattern.
    """
    try:
        return datetime.strptime(value, START_DATE_FORMAT)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid start date '{value}'. Format: yyyy-MM-dd.HH:mm:ss") from None


def compute_window(start, duration):
    """
    Computes the analysis window for a start date and a duration kind.

    Args:
        start (datetime | str): Window start, as a datetime or 'yyyy-MM-dd.HH:mm:ss'.
        duration (str): 'hourly' or 'daily'.

    Returns:
        Window: start and start + 1 hour / 1 day.
    """
    if isinstance(start, str):
        start = parse_start_date(start)
    if duration not in DURATIONS:
        raise ConfigError(f"Invalid duration '{duration}'. Possible values: {', '.join(DURATIONS)}")
    return Window(start=start, end=start + DURATIONS[duration])


def build_reason(duration):
    """'hourly' -> 'Hourly request threshold exceeded'."""
    return f"{duration[:1].upper()}{duration[1:]} request threshold exceeded"


def find_offenders(store, window, threshold):
    """
    Lazily yields (ip, request_count) for every IP with more than `threshold`
    requests inside the window, ordered by ascending request count.

    The query runs when iteration starts; the sequence can be consumed once.
    """
    logger.info(f"Selecting IPs with more than {threshold} requests between {window.start} and {window.end}")
    return store.query_request_counts(window.start, window.end, threshold)
