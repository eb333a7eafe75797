#!/usr/bin/env python3
"""
Relational store for parsed log entries and blocked IPs, built on SQLAlchemy Core.

A LogStore owns exactly one connection for the duration of a run. Autocommit
is never enabled: every write happens inside a transaction() scope, which
commits when the block finishes and rolls back explicitly when it raises.
"""
import logging
import os
from contextlib import contextmanager

import pandas as pd
import pyarrow as pa
from pyarrow import csv as pa_csv
from sqlalchemy import (
    Column, DateTime, Integer, MetaData, SmallInteger, String, Table,
    create_engine, delete, func, insert, select, text,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError

from errors import BulkLoadError, RejectedRowError, StoreError
from log_parser import DATE_FORMAT, DATE_PATTERN, DEFAULT_BULK_FORMAT

# Logger for this module
logger = logging.getLogger('botstats.store')

LOG_ENTRY_COLUMNS = ['date', 'ip', 'request', 'status', 'user_agent']

metadata = MetaData()

log_entries = Table(
    'log_entries', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('date', DateTime().with_variant(mysql.DATETIME(fsp=3), 'mysql'), nullable=False),
    Column('ip', String(15), nullable=False),
    Column('request', String(100), nullable=False),
    Column('status', SmallInteger, nullable=False),
    Column('user_agent', String(255), nullable=False),
)

blocked_ips = Table(
    'blocked_ips', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('ip', String(15), nullable=False),
    Column('request_count', Integer, nullable=False),
    Column('reason', String(100), nullable=False),
)

# Statement-level failures that leave the connection and transaction usable
ROW_LEVEL_ERRORS = (IntegrityError, DataError)

MYSQL_LOAD_DATA_SQL = (
    "LOAD DATA LOCAL INFILE :path INTO TABLE log_entries "
    "FIELDS TERMINATED BY :delimiter OPTIONALLY ENCLOSED BY :enclosure "
    "LINES TERMINATED BY :line_terminator "
    "(date, ip, request, status, user_agent)"
)


class LogStore:
    """
    Data sink used by the loader strategies, the aggregator and the recorder.

    Usage:
        with LogStore(url) as store:
            with store.transaction():
                store.truncate()
    """

    def __init__(self, url, echo=False):
        """
        Args:
            url (str | sqlalchemy.engine.URL): Database URL.
            echo (bool): Log every SQL statement through SQLAlchemy.
        """
        try:
            self.url = make_url(url)
            connect_args = {}
            if self.dialect_name == 'mysql':
                # Required by LOAD DATA LOCAL INFILE
                connect_args['local_infile'] = True
            self.engine = create_engine(self.url, echo=echo, connect_args=connect_args)
        except SQLAlchemyError as e:
            raise StoreError(f"Invalid database configuration: {e}") from e
        self.connection = None

    @property
    def dialect_name(self):
        return self.url.get_backend_name()

    # --- Connection lifecycle ---

    def open(self):
        """Opens the run's connection."""
        if self.connection is not None:
            return self
        try:
            self.connection = self.engine.connect()
        except SQLAlchemyError as e:
            raise StoreError(f"Could not connect to {self.url.render_as_string(hide_password=True)}: {e}") from e
        logger.debug(f"Connected to {self.url.render_as_string(hide_password=True)}")
        return self

    def close(self):
        """Closes the connection (rolling back anything uncommitted) and disposes the engine."""
        if self.connection is not None:
            try:
                self.connection.close()
            finally:
                self.connection = None
                self.engine.dispose()

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _require_connection(self):
        if self.connection is None:
            raise StoreError("Store connection is not open")
        return self.connection

    @contextmanager
    def transaction(self):
        """
        Transactional scope: commits on success, rolls back explicitly on any error.

        Yields:
            sqlalchemy.engine.Connection: The run's connection.
        """
        conn = self._require_connection()
        if not conn.in_transaction():
            # Begun eagerly so pandas.to_sql joins it instead of committing its own
            conn.begin()
        try:
            yield conn
        except BaseException:
            try:
                conn.rollback()
            except SQLAlchemyError as rollback_err:
                logger.error(f"Rollback failed: {rollback_err}")
            raise
        try:
            conn.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Commit failed: {e}") from e

    def _execute(self, statement, parameters=None):
        conn = self._require_connection()
        try:
            return conn.execute(statement, parameters)
        except ROW_LEVEL_ERRORS as e:
            raise RejectedRowError(str(e.orig) if e.orig is not None else str(e)) from e
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    # --- Schema ---

    def create_schema(self):
        """Creates the log_entries and blocked_ips tables if they do not exist."""
        conn = self._require_connection()
        try:
            metadata.create_all(conn)
        except SQLAlchemyError as e:
            raise StoreError(f"Schema creation failed: {e}") from e
        logger.info("Schema ready (log_entries, blocked_ips)")

    def truncate(self):
        """Deletes previously stored rows from both tables."""
        for table in (log_entries, blocked_ips):
            if self.dialect_name == 'mysql':
                self._execute(text(f"TRUNCATE TABLE {table.name}"))
            else:
                self._execute(delete(table))
        logger.debug("Tables log_entries and blocked_ips truncated")

    # --- Entries store ---

    def insert_entry(self, record):
        """
        Inserts a single LogRecord.

        Returns:
            int: Affected row count reported by the driver.

        Raises:
            RejectedRowError: The store rejected this row.
            StoreError: Any other store failure.
        """
        result = self._execute(insert(log_entries), record.as_row())
        return result.rowcount

    def insert_entries(self, records):
        """
        Inserts all records with one executemany submission.

        Returns:
            int: Sum of affected rows reported by the driver, or the batch size
                 when the driver does not report counts for executemany.

        Raises:
            RejectedRowError: The store rejected (part of) the batch.
            StoreError: Any other store failure.
        """
        rows = [record.as_row() for record in records]
        if not rows:
            return 0
        result = self._execute(insert(log_entries), rows)
        if result.rowcount is None or result.rowcount < 0:
            return len(rows)
        return result.rowcount

    def count_entries(self):
        """Returns the number of rows currently visible in log_entries."""
        return self._execute(select(func.count()).select_from(log_entries)).scalar_one()

    def bulk_load_file(self, file_path, bulk_format=DEFAULT_BULK_FORMAT):
        """
        Loads a whole file into log_entries with the store's native bulk mechanism.

        MySQL uses LOAD DATA LOCAL INFILE. Any server warning (skipped or truncated
        rows) makes the whole transfer fail. Other dialects read the file in one
        pass with pyarrow and write it with pandas; any malformed row aborts the
        whole transfer.

        Returns:
            int: Row count reported by the store.

        Raises:
            BulkLoadError: The transfer was rejected as a whole.
            StoreError: Connection or query failure.
        """
        if self.dialect_name == 'mysql':
            return self._mysql_load_data(file_path, bulk_format)
        return self._dataframe_load(file_path, bulk_format)

    def _mysql_load_data(self, file_path, bulk_format):
        conn = self._require_connection()
        params = {
            'path': file_path,
            'delimiter': bulk_format.delimiter,
            'enclosure': bulk_format.enclosure,
            'line_terminator': bulk_format.line_terminator,
        }
        try:
            result = conn.execute(text(MYSQL_LOAD_DATA_SQL), params)
            loaded = result.rowcount
            warnings = conn.exec_driver_sql("SELECT @@warning_count").scalar()
        except SQLAlchemyError as e:
            raise BulkLoadError(f"LOAD DATA LOCAL INFILE failed for {file_path}: {e}") from e
        if warnings:
            raise BulkLoadError(f"LOAD DATA LOCAL INFILE reported {warnings} warning(s) for {file_path}; transfer discarded")
        return loaded

    def _dataframe_load(self, file_path, bulk_format):
        conn = self._require_connection()
        if os.path.getsize(file_path) == 0:
            return 0
        try:
            table = pa_csv.read_csv(
                file_path,
                read_options=pa_csv.ReadOptions(column_names=LOG_ENTRY_COLUMNS),
                parse_options=pa_csv.ParseOptions(
                    delimiter=bulk_format.delimiter,
                    quote_char=bulk_format.enclosure,
                ),
                convert_options=pa_csv.ConvertOptions(column_types={
                    'date': pa.string(),
                    'ip': pa.string(),
                    'request': pa.string(),
                    'status': pa.int16(),
                    'user_agent': pa.string(),
                }),
            )
            frame = table.to_pandas()
            if not frame['date'].str.fullmatch(DATE_PATTERN.pattern).all():
                raise ValueError("date column does not match yyyy-MM-dd HH:mm:ss.SSS")
            frame['date'] = pd.to_datetime(frame['date'], format=DATE_FORMAT)
        except (pa.ArrowInvalid, ValueError) as e:
            raise BulkLoadError(f"Bulk transfer of {file_path} rejected: {e}") from e

        try:
            loaded = frame.to_sql(log_entries.name, conn, if_exists='append', index=False)
        except SQLAlchemyError as e:
            raise BulkLoadError(f"Bulk transfer of {file_path} rejected: {e}") from e
        return len(frame) if loaded is None else loaded

    # --- Aggregation ---

    def query_request_counts(self, start, end, threshold):
        """
        Yields (ip, request_count) pairs with more than `threshold` requests
        whose date is BETWEEN start AND end (both ends inclusive), ordered by
        ascending count (ties by ip).
        """
        request_count = func.count(log_entries.c.ip)
        statement = (
            select(log_entries.c.ip, request_count.label('request_count'))
            .where(log_entries.c.date.between(start, end))
            .group_by(log_entries.c.ip)
            .having(request_count > threshold)
            .order_by(request_count, log_entries.c.ip)
        )
        logger.debug(f"Aggregation query: {statement} [start={start}, end={end}, threshold={threshold}]")
        for ip, count in self._execute(statement):
            yield ip, count

    def requests_for_ip(self, ip):
        """Returns (date, request, status, user_agent) rows of one IP, oldest first."""
        statement = (
            select(log_entries.c.date, log_entries.c.request, log_entries.c.status, log_entries.c.user_agent)
            .where(log_entries.c.ip == ip)
            .order_by(log_entries.c.date)
        )
        return [tuple(row) for row in self._execute(statement)]

    # --- Blocked-IP store ---

    def insert_blocked(self, ip, request_count, reason):
        """Inserts one blocked_ips row."""
        self._execute(insert(blocked_ips), {'ip': ip, 'request_count': request_count, 'reason': reason})

    def blocked_entries(self):
        """Returns all (ip, request_count, reason) rows in insertion order."""
        statement = select(blocked_ips.c.ip, blocked_ips.c.request_count, blocked_ips.c.reason).order_by(blocked_ips.c.id)
        return [tuple(row) for row in self._execute(statement)]
