#!/usr/bin/env python3
"""
Module for recording the IPs that exceeded the request threshold into blocked_ips.
"""
import logging
from dataclasses import dataclass

# Logger for this module
logger = logging.getLogger('botstats.recorder')


@dataclass(frozen=True)
class BlockedEntry:
    """One blocked_ips row."""
    ip: str
    request_count: int
    reason: str

    def describe(self):
        """Fixed-width line: IP right-aligned on 15 chars, count on 4 digits."""
        return f"IP: {self.ip:>15} | Request count: {self.request_count:4d}  ->  {self.reason}"


class BlockedIPRecorder:
    """
    Logs and persists blocked IPs. Committing is left to the caller's
    transaction scope, so all rows of a run are committed together.
    """

    def __init__(self, store, threshold):
        """
        Args:
            store (log_store.LogStore): Open store to write into.
            threshold (int): Exclusive request threshold the entries must exceed.
        """
        self.store = store
        self.threshold = threshold

    def record(self, offenders, reason):
        """
        Records every (ip, request_count) pair of `offenders`.

        Args:
            offenders (iterable): (ip, request_count) pairs, consumed once.
            reason (str): Human readable reason stored with each row.

        Returns:
            list[BlockedEntry]: The recorded entries, in input order.

        Raises:
            ValueError: A pair does not exceed the threshold.
        """
        recorded = []
        for ip, request_count in offenders:
            if request_count <= self.threshold:
                raise ValueError(f"{ip} has {request_count} requests, not above threshold {self.threshold}")
            entry = BlockedEntry(ip=ip, request_count=request_count, reason=reason)
            logger.info(entry.describe())
            self.store.insert_blocked(entry.ip, entry.request_count, entry.reason)
            recorded.append(entry)

        if not recorded:
            logger.info("No IPs exceeded the threshold.")
        else:
            logger.info(f"{len(recorded)} IP(s) recorded in blocked_ips")
        return recorded
