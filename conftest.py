import pytest

from log_store import LogStore


def _format_log_line(timestamp, ip, status=200, request='GET / HTTP/1.1', user_agent='Mozilla/5.0 (Windows NT 10.0; Win64; x64)'):
    """Builds a line the way the access log writes it: request and user agent quoted."""
    return f'{timestamp}|{ip}|"{request}"|{status}|"{user_agent}"'


@pytest.fixture
def log_line():
    return _format_log_line


@pytest.fixture
def write_log(tmp_path):
    """Writes lines to a CRLF-terminated log file and returns its path."""
    def _write(lines, name='access.log', terminator='\r\n'):
        path = tmp_path / name
        path.write_bytes(''.join(line + terminator for line in lines).encode('utf-8'))
        return str(path)
    return _write


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'parser.db'}"


@pytest.fixture
def store(db_url):
    with LogStore(db_url) as log_store:
        with log_store.transaction():
            log_store.create_schema()
        yield log_store


@pytest.fixture
def sample_lines(log_line):
    """192.168.1.1 makes 5 requests and 192.168.1.2 makes 2, all between 13:00 and 13:30."""
    lines = [log_line(f'2017-01-01 13:0{i}:00.000', '192.168.1.1') for i in range(5)]
    lines += [log_line(f'2017-01-01 13:1{i}:00.500', '192.168.1.2', status=404) for i in range(2)]
    lines.append(log_line('2017-01-01 13:30:00.250', '10.0.0.7', request='POST /login HTTP/1.1', status=302))
    return lines
