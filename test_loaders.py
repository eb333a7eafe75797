from datetime import datetime

import pytest
from sqlalchemy import select

from errors import BulkLoadError, ConfigError, RejectedRowError
from loaders import (
    DEFAULT_LOADER_STRATEGY, LOADER_STRATEGIES, BatchedLoader, BulkFileTransferLoader,
    LoaderStrategy, RowByRowLoader, get_loader,
)
from log_store import log_entries

MALFORMED_LINE = '2017-01-01 13:00:00.000|bad-status|x|notanumber|agent'


def _stored_rows(store):
    statement = select(
        log_entries.c.date, log_entries.c.ip, log_entries.c.request,
        log_entries.c.status, log_entries.c.user_agent,
    ).order_by(log_entries.c.date, log_entries.c.ip)
    return [tuple(row) for row in store.connection.execute(statement)]


def _load(store, loader, path):
    with store.transaction():
        store.truncate()
    with store.transaction():
        return loader.load(store, path)


def test_registry_exposes_three_strategies():
    assert set(LOADER_STRATEGIES) == {'row-by-row', 'batched', 'bulk-file-transfer'}
    assert DEFAULT_LOADER_STRATEGY == 'bulk-file-transfer'
    for name in LOADER_STRATEGIES:
        loader = get_loader(name)
        assert isinstance(loader, LoaderStrategy)
        assert loader.name == name


def test_get_loader_rejects_unknown_name():
    with pytest.raises(ConfigError, match='JDBC_SIMPLE'):
        get_loader('JDBC_SIMPLE')


def test_all_strategies_load_identical_rows(store, write_log, sample_lines):
    path = write_log(sample_lines)

    results = {}
    for name in LOADER_STRATEGIES:
        loaded = _load(store, get_loader(name), path)
        results[name] = (loaded, _stored_rows(store))

    expected_rows = results['row-by-row'][1]
    assert len(expected_rows) == len(sample_lines)
    assert expected_rows[0] == (datetime(2017, 1, 1, 13, 0), '192.168.1.1', 'GET / HTTP/1.1', 200,
                                'Mozilla/5.0 (Windows NT 10.0; Win64; x64)')
    for name, (loaded, rows) in results.items():
        assert loaded == len(sample_lines), name
        assert rows == expected_rows, name


@pytest.mark.parametrize('loader', [RowByRowLoader(), BatchedLoader()])
def test_parsing_strategies_skip_malformed_lines(store, write_log, sample_lines, loader):
    path = write_log(sample_lines[:3] + [MALFORMED_LINE] + sample_lines[3:])

    loaded = _load(store, loader, path)

    assert loaded == len(sample_lines)
    assert 'bad-status' not in [row[1] for row in _stored_rows(store)]


def test_bulk_transfer_rejects_malformed_file_atomically(store, write_log, sample_lines):
    path = write_log(sample_lines + [MALFORMED_LINE])

    with pytest.raises(BulkLoadError):
        _load(store, BulkFileTransferLoader(), path)

    assert _stored_rows(store) == []


def test_whitespace_only_line_is_store_dependent(store, write_log, sample_lines):
    path = write_log(sample_lines + ['   '])

    assert _load(store, RowByRowLoader(), path) == len(sample_lines)
    assert _load(store, BatchedLoader(), path) == len(sample_lines)
    with pytest.raises(BulkLoadError, match='Expected 5 columns'):
        _load(store, BulkFileTransferLoader(), path)


def test_bulk_transfer_rejects_microsecond_dates(store, write_log, log_line, sample_lines):
    path = write_log(sample_lines + [log_line('2017-01-01 13:00:00.123456', '10.0.0.9')])

    with pytest.raises(BulkLoadError):
        _load(store, BulkFileTransferLoader(), path)

    assert _stored_rows(store) == []


def _write_invalid_utf8_log(tmp_path, sample_lines):
    path = tmp_path / 'latin1.log'
    good = ''.join(line + '\r\n' for line in sample_lines).encode('utf-8')
    path.write_bytes(good + b'2017-01-01 13:00:00.000|10.0.0.9|GET / HTTP/1.1|200|ag\xffent\r\n')
    return str(path)


@pytest.mark.parametrize('loader', [RowByRowLoader(), BatchedLoader()])
def test_parsing_strategies_skip_invalid_utf8_lines(store, tmp_path, sample_lines, loader):
    loaded = _load(store, loader, _write_invalid_utf8_log(tmp_path, sample_lines))

    assert loaded == len(sample_lines)
    assert '10.0.0.9' not in [row[1] for row in _stored_rows(store)]


def test_bulk_transfer_rejects_invalid_utf8_file(store, tmp_path, sample_lines):
    with pytest.raises(BulkLoadError):
        _load(store, BulkFileTransferLoader(), _write_invalid_utf8_log(tmp_path, sample_lines))

    assert _stored_rows(store) == []


def test_bulk_transfer_loads_unquoted_fields(store, write_log):
    path = write_log(['2017-01-01 13:00:00.123|10.0.0.1|GET / HTTP/1.1|200|curl/7.58.0'])

    assert _load(store, BulkFileTransferLoader(), path) == 1
    assert _stored_rows(store) == [(datetime(2017, 1, 1, 13, 0, 0, 123000), '10.0.0.1', 'GET / HTTP/1.1', 200, 'curl/7.58.0')]


@pytest.mark.parametrize('name', list(LOADER_STRATEGIES))
def test_empty_file_loads_nothing(store, write_log, name):
    path = write_log([])

    assert _load(store, get_loader(name), path) == 0


@pytest.mark.parametrize('name', list(LOADER_STRATEGIES))
def test_missing_file_raises_os_error(store, tmp_path, name):
    with pytest.raises(FileNotFoundError):
        _load(store, get_loader(name), str(tmp_path / 'missing.log'))


class RejectingStore:
    """Stand-in store rejecting the rows of one IP."""

    def __init__(self, rejected_ip):
        self.rejected_ip = rejected_ip
        self.inserted = []

    def insert_entry(self, record):
        if record.ip == self.rejected_ip:
            raise RejectedRowError('Duplicate entry')
        self.inserted.append(record)
        return 1


class PartialBatchStore:
    """Stand-in store keeping only the first rows of a batch before rejecting it."""

    def __init__(self, kept):
        self.kept = kept
        self.rows = 0

    def count_entries(self):
        return self.rows

    def insert_entries(self, records):
        self.rows += self.kept
        raise RejectedRowError('Data too long for column request')


def test_row_by_row_skips_rows_rejected_by_store(write_log, sample_lines):
    store = RejectingStore('192.168.1.2')

    loaded = RowByRowLoader().load(store, write_log(sample_lines))

    assert loaded == len(sample_lines) - 2
    assert '192.168.1.2' not in {r.ip for r in store.inserted}


def test_batched_reports_rows_kept_after_rejection(write_log, sample_lines):
    store = PartialBatchStore(kept=3)

    assert BatchedLoader().load(store, write_log(sample_lines)) == 3
