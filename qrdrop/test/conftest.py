"""Shared pytest fixtures and helpers."""

import asyncio

import h11
import pytest

from qrdrop.http.messages import HTTPRequest


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_request(method='GET', target='/', headers=None, peer_ip='127.0.0.1', body=None):
    """Builds an HTTPRequest whose body is served from the given bytes."""
    chunks = [] if body is None else [body]

    async def reader():
        if len(chunks) == 0:
            return b''
        return chunks.pop(0)

    return HTTPRequest(method, target, headers or {}, peer_ip, body_reader=reader)


def build_multipart(files, boundary='qrdropTestBoundary', fields=None):
    """
    files: list of (filename, content bytes) sent as the `file` field
    fields: optional dict of plain form fields
    """
    body = b''
    for name, value in (fields or {}).items():
        body += ('--%s\r\n' % boundary).encode()
        body += ('Content-Disposition: form-data; name="%s"\r\n\r\n' % name).encode()
        body += value.encode() + b'\r\n'
    for filename, content in files:
        body += ('--%s\r\n' % boundary).encode()
        body += ('Content-Disposition: form-data; name="file"; filename="%s"\r\n' % filename).encode()
        body += b'Content-Type: application/octet-stream\r\n\r\n'
        body += content + b'\r\n'
    body += ('--%s--\r\n' % boundary).encode()
    return 'multipart/form-data; boundary=%s' % boundary, body


async def chunked(data, size=7):
    """Async iterator over data in small pieces, to split boundaries across chunks."""
    for i in range(0, len(data), size):
        yield data[i:i + size]


async def http_request(port, method, target, headers=None, body=b'', ssl_ctx=None):
    """
    Minimal h11 client. Returns (status, headers dict, body bytes).
    """
    reader, writer = await asyncio.open_connection('127.0.0.1', port, ssl=ssl_ctx)
    conn = h11.Connection(h11.CLIENT)
    request_headers = [('Host', '127.0.0.1'), ('Connection', 'close')]
    request_headers.extend(headers or [])
    if body:
        request_headers.append(('Content-Length', str(len(body))))

    writer.write(conn.send(h11.Request(method=method, target=target, headers=request_headers)))
    if body:
        writer.write(conn.send(h11.Data(data=body)))
    writer.write(conn.send(h11.EndOfMessage()))
    await writer.drain()

    response = None
    data = b''
    try:
        while True:
            event = conn.next_event()
            if event is h11.NEED_DATA:
                conn.receive_data(await reader.read(65536))
                continue
            if type(event) is h11.Response:
                response = event
            elif type(event) is h11.Data:
                data += event.data
            elif type(event) in (h11.EndOfMessage, h11.ConnectionClosed):
                break
    finally:
        writer.close()

    headers = {}
    for name, value in response.headers:
        headers[name.decode('latin-1').lower()] = value.decode('latin-1')
    return response.status_code, headers, data


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def share_dir(tmp_path):
    """
    Directory with two files of 10 and 20000 bytes.

    Returns:
        Path to the directory
    """
    directory = tmp_path / 'share'
    directory.mkdir()
    (directory / 'small.txt').write_bytes(b'0123456789')
    (directory / 'large.bin').write_bytes(bytes(i % 251 for i in range(20000)))
    return directory


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / 'received'
