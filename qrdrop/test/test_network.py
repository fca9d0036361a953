import socket

import pytest

from qrdrop.constants import RANDOM_PATH_CHARS
from qrdrop.errors import FatalConfigError
from qrdrop.network import NetworkInfo, normalize_url_path, random_url_path, find_available_port, \
    is_port_available


def test_url():
    assert NetworkInfo('192.168.1.5', 1673, 'abc').url == 'http://192.168.1.5:1673/abc/'
    assert NetworkInfo('192.168.1.5', 1673, '/', secure=True).url == 'https://192.168.1.5:1673/'
    assert NetworkInfo('fe80::1', 8080, '').url == 'http://[fe80::1]:8080/'


def test_normalize_url_path():
    assert normalize_url_path(None) == ''
    assert normalize_url_path('/') == ''
    assert normalize_url_path('abc') == '/abc'
    assert normalize_url_path('/abc/') == '/abc'


def test_random_url_path():
    path = random_url_path()
    assert len(path) == 16
    assert all(c in RANDOM_PATH_CHARS for c in path)
    assert random_url_path() != path


def test_find_available_port_skips_busy_ports():
    busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    busy.bind(('127.0.0.1', 0))
    busy.listen(1)
    try:
        port = busy.getsockname()[1]
        assert is_port_available('127.0.0.1', port) is False
        found = find_available_port('127.0.0.1', port, 10)
        assert found != port
        assert port < found < port + 10
    finally:
        busy.close()


def test_find_available_port_gives_up():
    busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    busy.bind(('127.0.0.1', 0))
    busy.listen(1)
    try:
        port = busy.getsockname()[1]
        with pytest.raises(FatalConfigError):
            find_available_port('127.0.0.1', port, 1)
    finally:
        busy.close()
