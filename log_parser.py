#!/usr/bin/env python3
"""
Module for parsing pipe-delimited access log lines into LogRecord objects.

Line layout (bulk-transfer format):
    date|ip|request|status|user_agent
    2017-01-01 00:00:11.763|192.168.234.82|"GET / HTTP/1.1"|200|"swcd (unknown version) CFNetwork/808.2.16 Darwin/15.6.0"
"""
import ipaddress
import logging
import re
from dataclasses import dataclass
from datetime import datetime

from errors import ParseError

# Logger for this module
logger = logging.getLogger('botstats.parser')

DATE_FORMAT = '%Y-%m-%d %H:%M:%S.%f'
# strptime alone accepts unpadded fields and 1-6 fraction digits
DATE_PATTERN = re.compile(r'\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}')
FIELD_COUNT = 5

# Column limits of the log_entries table
MAX_IP_LENGTH = 15
MAX_REQUEST_LENGTH = 100
MAX_USER_AGENT_LENGTH = 255


@dataclass(frozen=True)
class BulkFormat:
    """Field/line layout handed to the store's native bulk loader."""
    delimiter: str = '|'
    enclosure: str = '"'
    line_terminator: str = '\r\n'


DEFAULT_BULK_FORMAT = BulkFormat()


@dataclass(frozen=True)
class LogRecord:
    """One parsed access log line."""
    timestamp: datetime
    ip: str
    request: str
    status: int
    user_agent: str

    def as_row(self):
        """Returns the record as a dict keyed by log_entries column names."""
        return {
            'date': self.timestamp,
            'ip': self.ip,
            'request': self.request,
            'status': self.status,
            'user_agent': self.user_agent,
        }


def format_timestamp(timestamp):
    """Formats a datetime as 'yyyy-MM-dd HH:mm:ss.SSS' (millisecond precision)."""
    return timestamp.strftime('%Y-%m-%d %H:%M:%S') + f".{timestamp.microsecond // 1000:03d}"


def _check_length(name, value, limit, line_number, line):
    if not value:
        raise ParseError(f"Empty {name} field", line_number, line)
    if len(value) > limit:
        raise ParseError(f"{name} field longer than {limit} characters", line_number, line)


def parse_line(line, line_number=None, bulk_format=DEFAULT_BULK_FORMAT):
    """
    Parses one raw log line into a LogRecord.

    Enclosure characters are stripped before the line is split, so quoted
    and unquoted fields are accepted alike.

    Args:
        line (str): Raw line, with or without its line terminator.
        line_number (int, optional): Used only to enrich error messages.
        bulk_format (BulkFormat): Delimiter and enclosure of the file.

    Returns:
        LogRecord: The parsed record.

    Raises:
        ParseError: Undecodable bytes, wrong field count, a date not shaped
            exactly as yyyy-MM-dd HH:mm:ss.SSS, invalid IPv4 address,
            non-integer status, or a field exceeding its column size.
    """
    stripped = line.rstrip('\r\n')
    try:
        stripped.encode('utf-8')
    except UnicodeEncodeError:
        # Undecodable bytes, kept as surrogates by stream_log_records
        raise ParseError("Invalid UTF-8 byte sequence", line_number, ascii(stripped)) from None
    fields = stripped.replace(bulk_format.enclosure, '').split(bulk_format.delimiter)
    if len(fields) != FIELD_COUNT:
        raise ParseError(f"Expected {FIELD_COUNT} fields, got {len(fields)}", line_number, stripped)

    date_str, ip, request, status_str, user_agent = fields

    if not DATE_PATTERN.fullmatch(date_str):
        raise ParseError(f"Malformed date '{date_str}'", line_number, stripped)
    try:
        timestamp = datetime.strptime(date_str, DATE_FORMAT)
    except ValueError:
        raise ParseError(f"Malformed date '{date_str}'", line_number, stripped) from None

    try:
        ipaddress.IPv4Address(ip)
    except ValueError:
        raise ParseError(f"Invalid IPv4 address '{ip}'", line_number, stripped) from None

    try:
        status = int(status_str)
    except ValueError:
        raise ParseError(f"Non-integer status '{status_str}'", line_number, stripped) from None

    _check_length('ip', ip, MAX_IP_LENGTH, line_number, stripped)
    _check_length('request', request, MAX_REQUEST_LENGTH, line_number, stripped)
    _check_length('user_agent', user_agent, MAX_USER_AGENT_LENGTH, line_number, stripped)

    return LogRecord(timestamp=timestamp, ip=ip, request=request, status=status, user_agent=user_agent)


def format_line(record, bulk_format=DEFAULT_BULK_FORMAT, enclose=False):
    """
    Serializes a LogRecord back to the bulk-transfer line form (without terminator).

    Args:
        record (LogRecord): Record to serialize.
        bulk_format (BulkFormat): Delimiter and enclosure to use.
        enclose (bool): Wrap the request and user agent fields in the enclosure character.

    Returns:
        str: The serialized line.
    """
    request = record.request
    user_agent = record.user_agent
    if enclose:
        quote = bulk_format.enclosure
        request = f"{quote}{request}{quote}"
        user_agent = f"{quote}{user_agent}{quote}"
    return bulk_format.delimiter.join([
        format_timestamp(record.timestamp),
        record.ip,
        request,
        str(record.status),
        user_agent,
    ])


def stream_log_records(log_file, bulk_format=DEFAULT_BULK_FORMAT):
    """
    Reads a log file and yields parsed LogRecords one by one.

    Lines that fail to parse are logged and skipped; blank lines are ignored.
    Invalid UTF-8 is kept as surrogate escapes so parse_line rejects the line.
    The file is closed on every exit path, including when the consumer stops
    iterating early or raises.

    Args:
        log_file (str): Path to the log file.
        bulk_format (BulkFormat): Delimiter and enclosure of the file.

    Yields:
        LogRecord: One record per well-formed line.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    total_lines = 0
    skipped_parsing = 0
    yielded_count = 0

    logger.info(f"Processing log file {log_file}")
    with open(log_file, 'r', encoding='utf-8', errors='surrogateescape') as log_source:
        for line_number, line in enumerate(log_source, start=1):
            total_lines += 1

            # Log progress periodically
            if total_lines % 50000 == 0:
                logger.info(f"Processed {total_lines} lines...")

            if not line.strip():
                continue
            try:
                record = parse_line(line, line_number, bulk_format)
            except ParseError as e:
                skipped_parsing += 1
                logger.error(str(e))
                continue

            yield record
            yielded_count += 1

    logger.info(f"Finished reading log file. Total lines: {total_lines}")
    logger.info(f"Records parsed: {yielded_count}, Skipped (Parsing): {skipped_parsing}")
