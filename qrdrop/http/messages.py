import json
import inspect
import urllib.parse
from typing import AsyncIterator, Callable, Dict, List, Tuple, Union

from qrdrop import logger


class HTTPRequest:
    """
    One parsed request. The body is not buffered: it is pulled from the
    connection through iter_body() or read_body().
    """

    def __init__(self, method:str, target:str, headers:Dict[str, str] = None, peer_ip:str = None, body_reader:Callable = None):
        self.method = method.upper()
        self.target = target
        parts = urllib.parse.urlsplit(target)
        self.path = parts.path or '/'
        self.query = urllib.parse.parse_qs(parts.query)
        self.headers = {} if headers is None else headers
        self.peer_ip = peer_ip
        self.params:Dict[str, str] = {}
        self._body_reader = body_reader
        self.body_consumed = body_reader is None

    def get_header(self, name:str, default=None):
        return self.headers.get(name.lower(), default)

    @property
    def content_type(self):
        return self.get_header('content-type', '')

    @property
    def user_agent(self):
        return self.get_header('user-agent', 'unknown')

    async def iter_body(self) -> AsyncIterator[bytes]:
        if self.body_consumed is True:
            return
        while True:
            chunk = await self._body_reader()
            if not chunk:
                break
            yield chunk
        self.body_consumed = True

    async def read_body(self, limit:int = None) -> bytes:
        data = b''
        async for chunk in self.iter_body():
            data += chunk
            if limit is not None and len(data) > limit:
                raise ValueError('Request body too large')
        return data

    async def discard_body(self, limit:int) -> bool:
        """Drains up to limit bytes of unread body. Returns True if the body was fully consumed."""
        if self.body_consumed is True:
            return True
        drained = 0
        async for chunk in self.iter_body():
            drained += len(chunk)
            if drained > limit:
                return False
        return self.body_consumed

    def __repr__(self):
        return '<HTTPRequest %s %s>' % (self.method, self.target)


class HTTPResponse:
    def __init__(self, status:int = 200, headers:List[Tuple[str, str]] = None, body:Union[bytes, AsyncIterator[bytes]] = b''):
        self.status = status
        self.headers:List[Tuple[str, str]] = [] if headers is None else list(headers)
        self.body = body
        self._close_callbacks = []
        self.closed = False

    def set_header(self, name:str, value):
        self.remove_header(name)
        self.headers.append((name, str(value)))

    def get_header(self, name:str, default=None):
        name = name.lower()
        for hname, value in self.headers:
            if hname.lower() == name:
                return value
        return default

    def remove_header(self, name:str):
        name = name.lower()
        self.headers = [(k, v) for k, v in self.headers if k.lower() != name]

    @property
    def is_streaming(self):
        return not isinstance(self.body, (bytes, bytearray))

    def on_close(self, callback:Callable):
        """Registers a callback (plain or async) that runs once the response is done, sent or not."""
        self._close_callbacks.append(callback)

    async def aclose(self):
        if self.closed is True:
            return
        self.closed = True
        if self.is_streaming and hasattr(self.body, 'aclose'):
            try:
                await self.body.aclose()
            except Exception as e:
                logger.debug('Error closing response body: %s' % e)
        for callback in self._close_callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception('Response close callback failed')

    @staticmethod
    def text(status:int, message:str, content_type:str = 'text/plain; charset=utf-8'):
        body = message.encode('utf-8')
        return HTTPResponse(status, [('Content-Type', content_type), ('Content-Length', str(len(body)))], body)

    @staticmethod
    def html(content:str, status:int = 200):
        return HTTPResponse.text(status, content, 'text/html; charset=utf-8')

    @staticmethod
    def json(data, status:int = 200):
        body = json.dumps(data).encode('utf-8')
        return HTTPResponse(status, [('Content-Type', 'application/json'), ('Content-Length', str(len(body)))], body)

    @staticmethod
    def empty(status:int = 204):
        return HTTPResponse(status, [], b'')

    @staticmethod
    def redirect(location:str, status:int = 301):
        resp = HTTPResponse(status, [('Location', location), ('Content-Length', '0')], b'')
        return resp

    def __repr__(self):
        return '<HTTPResponse %s>' % self.status
