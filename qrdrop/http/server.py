import asyncio
import datetime
import email.utils
from itertools import count
from typing import Awaitable, Callable

import h11

from qrdrop import logger
from qrdrop._version import __version__
from qrdrop.constants import UPLOAD_READ_TIMEOUT
from qrdrop.transport.target import ServerTarget
from qrdrop.transport.connection import StreamConnection
from qrdrop.transport.server import StreamServer
from qrdrop.http.messages import HTTPRequest, HTTPResponse

# unread request body we are willing to drain to keep a connection alive
MAX_DISCARD_BODY = 1024 * 1024


def format_date_time(dt=None):
    """Generate a RFC 7231 / RFC 9110 IMF-fixdate string"""
    if dt is None:
        dt = datetime.datetime.now(datetime.timezone.utc)
    return email.utils.format_datetime(dt, usegmt=True)


class HTTPConnectionWrapper:
    def __init__(self, client_id, stream:StreamConnection, read_timeout:float = UPLOAD_READ_TIMEOUT):
        self.client_id = client_id
        self.stream = stream
        self.read_timeout = read_timeout
        self.conn = h11.Connection(h11.SERVER)
        self.ident = " ".join(
            ["qrdrop/%s" % __version__, h11.PRODUCT_ID]
        ).encode("ascii")

    async def send(self, event):
        # ConnectionClosed is never sent through here
        assert type(event) is not h11.ConnectionClosed
        data = self.conn.send(event)
        try:
            await self.stream.write(data)
        except BaseException:
            self.conn.send_failed()
            raise

    async def _read_from_peer(self):
        if self.conn.they_are_waiting_for_100_continue:
            logger.debug('[%s] Sending 100 Continue' % self.client_id)
            go_ahead = h11.InformationalResponse(
                status_code=100, headers=self.basic_headers()
            )
            await self.send(go_ahead)
        try:
            data = await self.stream.read_one()
        except (ConnectionError, OSError) as exc:
            logger.debug('[%s] Error reading from peer: %s' % (self.client_id, exc))
            data = b""
        self.conn.receive_data(data)

    async def next_event(self):
        while True:
            event = self.conn.next_event()
            if event is h11.NEED_DATA:
                await self._read_from_peer()
                continue
            return event

    async def read_body_chunk(self) -> bytes:
        """Next piece of the current request body, b'' once the body is complete."""
        event = await asyncio.wait_for(self.next_event(), timeout=self.read_timeout)
        if type(event) is h11.Data:
            return bytes(event.data)
        if type(event) is h11.EndOfMessage:
            return b''
        raise ConnectionError('Connection lost while reading request body (%s)' % type(event).__name__)

    async def shutdown_and_clean_up(self):
        await self.stream.close()

    def basic_headers(self):
        return [
            ("Date", format_date_time().encode("ascii")),
            ("Server", self.ident),
        ]


class HTTPServer:
    """
    Serves one application callable over h11. The application receives an
    HTTPRequest and returns an HTTPResponse, it never touches the wire.
    """

    def __init__(self, app:Callable[[HTTPRequest], Awaitable[HTTPResponse]], target:ServerTarget):
        self.app = app
        self.target = target
        self.server = StreamServer(target)
        self.clients = set()
        self.id_counter = count()
        self.serve_task = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def port(self):
        return self.server.bound_port()

    async def start(self):
        """Binds the listening socket and starts accepting in the background."""
        await self.server.listen()
        self.serve_task = asyncio.create_task(self.serve())
        return self.port

    async def close(self):
        self.server.close()
        if self.serve_task is not None:
            self.serve_task.cancel()
        for task in list(self.clients):
            task.cancel()
        if len(self.clients) > 0:
            await asyncio.gather(*self.clients, return_exceptions=True)
        self.clients.clear()

    def _build_request(self, wrapper:HTTPConnectionWrapper, event:h11.Request, peer_ip:str):
        headers = {}
        for name, value in event.headers:
            name = name.decode('latin-1').lower()
            value = value.decode('latin-1')
            if name in headers:
                headers[name] = headers[name] + ', ' + value
            else:
                headers[name] = value

        return HTTPRequest(
            event.method.decode('ascii'),
            event.target.decode('latin-1'),
            headers,
            peer_ip,
            body_reader = wrapper.read_body_chunk,
        )

    async def _send_response(self, wrapper:HTTPConnectionWrapper, request:HTTPRequest, response:HTTPResponse):
        headers = wrapper.basic_headers()
        for name, value in response.headers:
            headers.append((name.encode('latin-1'), str(value).encode('latin-1')))

        if response.is_streaming is False and response.get_header('content-length') is None and response.status not in (204, 304):
            headers.append((b'Content-Length', str(len(response.body)).encode('ascii')))

        await wrapper.send(h11.Response(status_code=response.status, headers=headers))
        if request.method != 'HEAD':
            if response.is_streaming is True:
                async for chunk in response.body:
                    if chunk:
                        await wrapper.send(h11.Data(data=chunk))
            elif len(response.body) > 0:
                await wrapper.send(h11.Data(data=response.body))
        await wrapper.send(h11.EndOfMessage())

    async def _process_request(self, wrapper:HTTPConnectionWrapper, event:h11.Request, peer_ip:str):
        request = self._build_request(wrapper, event, peer_ip)
        response = await self.app(request)
        try:
            await self._send_response(wrapper, request, response)
        finally:
            await response.aclose()

        if request.body_consumed is False:
            fully_read = await request.discard_body(MAX_DISCARD_BODY)
            if fully_read is False:
                logger.debug('[%s] Request body left unread, closing connection' % wrapper.client_id)
                return False
        return True

    async def __handle_connection(self, connection:StreamConnection):
        client_id = next(self.id_counter)
        wrapper = HTTPConnectionWrapper(client_id, connection)
        peer_ip = connection.get_peer_ip()
        logger.debug('[%s] New client connected from %s' % (client_id, peer_ip))
        try:
            while True:
                states = wrapper.conn.states
                if states[h11.CLIENT] in (h11.CLOSED, h11.MUST_CLOSE, h11.ERROR):
                    break
                if states[h11.SERVER] in (h11.CLOSED, h11.MUST_CLOSE, h11.ERROR):
                    break

                if states == {h11.CLIENT: h11.DONE, h11.SERVER: h11.DONE}:
                    wrapper.conn.start_next_cycle()
                    continue

                try:
                    event = await wrapper.next_event()
                except h11.RemoteProtocolError as exc:
                    logger.debug('[%s] Protocol error: %s' % (client_id, exc))
                    await self._send_protocol_error(wrapper, exc)
                    break

                if type(event) is h11.Request:
                    keep_going = await self._process_request(wrapper, event, peer_ip)
                    if keep_going is False:
                        break
                    continue
                if type(event) is h11.ConnectionClosed:
                    break
                logger.debug('[%s] Unexpected event %s' % (client_id, type(event).__name__))
                break

        except asyncio.CancelledError:
            raise
        except (ConnectionError, OSError, asyncio.TimeoutError) as exc:
            logger.debug('[%s] Connection dropped: %r' % (client_id, exc))
        except Exception:
            logger.exception('[%s] Unhandled error on connection' % client_id)
        finally:
            await wrapper.shutdown_and_clean_up()

    async def _send_protocol_error(self, wrapper:HTTPConnectionWrapper, exc:h11.RemoteProtocolError):
        if wrapper.conn.our_state not in (h11.IDLE, h11.SEND_RESPONSE):
            return
        body = str(exc).encode('utf-8')
        headers = wrapper.basic_headers()
        headers.extend([
            (b'Content-Type', b'text/plain; charset=utf-8'),
            (b'Content-Length', str(len(body)).encode('ascii')),
            (b'Connection', b'close'),
        ])
        try:
            await wrapper.send(h11.Response(status_code=exc.error_status_hint, headers=headers))
            await wrapper.send(h11.Data(data=body))
            await wrapper.send(h11.EndOfMessage())
        except Exception as e:
            logger.debug('Could not send protocol error response: %s' % e)

    def _client_done(self, task):
        self.clients.discard(task)

    async def serve(self):
        async for connection in self.server.serve():
            task = asyncio.create_task(self.__handle_connection(connection))
            self.clients.add(task)
            task.add_done_callback(self._client_done)
