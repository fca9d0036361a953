import re
import urllib.parse
from typing import Awaitable, Callable, List

from qrdrop import logger
from qrdrop.errors import QRDropError
from qrdrop.http.messages import HTTPRequest, HTTPResponse

Handler = Callable[[HTTPRequest], Awaitable[HTTPResponse]]

CORS_HEADERS = [
    ('Access-Control-Allow-Origin', '*'),
    ('Access-Control-Allow-Methods', 'GET, POST, OPTIONS'),
    ('Access-Control-Allow-Headers', 'Content-Type'),
]


def normalize_prefix(prefix:str):
    """'/abc/' -> '/abc', '' and '/' -> '' (no prefix)"""
    if not prefix:
        return ''
    prefix = '/' + prefix.strip('/')
    if prefix == '/':
        return ''
    return prefix


class Route:
    def __init__(self, method:str, pattern:str, handler:Handler):
        self.method = method.upper()
        self.pattern = pattern
        self.handler = handler
        self.param_names = []

        regex = ''
        for segment in pattern.split('/'):
            if segment == '':
                continue
            if segment.startswith(':'):
                self.param_names.append(segment[1:])
                regex += '/([^/]+)'
            else:
                regex += '/' + re.escape(segment)
        if regex == '':
            regex = '/'
        self.regex = re.compile('^' + regex + '$')

    def match(self, method:str, path:str):
        """Returns the bound parameters or None"""
        if method != self.method:
            return None
        m = self.regex.match(path)
        if m is None:
            return None
        params = {}
        for name, value in zip(self.param_names, m.groups()):
            params[name] = urllib.parse.unquote(value)
        return params

    def __repr__(self):
        return '<Route %s %s>' % (self.method, self.pattern)


class Router:
    """
    Method + path table with an optional URL prefix.

    Order of processing for each request:
      1. prefix handling (bare prefix -> 301 to prefix + '/', outside prefix -> not found)
      2. OPTIONS -> 204, logged but no access checks
      3. guard (IP allow-list, rate limit)
      4. first matching route in registration order, else the not-found handler
    Every response leaves with the CORS headers attached. Handler failures are
    turned into error responses here so one request never takes the server down.
    """

    def __init__(self, prefix:str = ''):
        self.prefix = normalize_prefix(prefix)
        self.routes:List[Route] = []
        self.not_found_handler:Handler = self._default_not_found
        self.guard = None

    def add_route(self, method:str, pattern:str, handler:Handler):
        route = Route(method, pattern, handler)
        self.routes.append(route)
        return route

    def get(self, pattern:str, handler:Handler):
        return self.add_route('GET', pattern, handler)

    def post(self, pattern:str, handler:Handler):
        return self.add_route('POST', pattern, handler)

    def options(self, pattern:str, handler:Handler):
        return self.add_route('OPTIONS', pattern, handler)

    def set_not_found_handler(self, handler:Handler):
        self.not_found_handler = handler

    def set_guard(self, guard):
        """guard must provide check(request) -> (allowed, response_if_denied) and log(request)"""
        self.guard = guard

    async def _default_not_found(self, request:HTTPRequest):
        return HTTPResponse.text(404, 'Not Found')

    def strip_prefix(self, path:str):
        """
        Returns (stripped_path, redirect_location). Exactly one of them is set,
        or both are None when the path is outside the prefix.
        """
        if self.prefix == '':
            return path, None
        if path == self.prefix:
            return None, self.prefix + '/'
        if path.startswith(self.prefix + '/'):
            return path[len(self.prefix):], None
        return None, None

    def match(self, method:str, path:str):
        for route in self.routes:
            params = route.match(method, path)
            if params is not None:
                return route, params
        return None, None

    async def dispatch(self, request:HTTPRequest) -> HTTPResponse:
        path, redirect = self.strip_prefix(request.path)
        if redirect is not None:
            return HTTPResponse.redirect(redirect)
        if path is None:
            return await self.not_found_handler(request)

        if request.method == 'OPTIONS':
            if self.guard is not None:
                self.guard.log(request)
            route, params = self.match('OPTIONS', path)
            if route is None:
                return HTTPResponse.empty(204)
            request.params = params
            return await route.handler(request)

        if self.guard is not None:
            allowed, denied_response = self.guard.check(request)
            if allowed is False:
                return denied_response

        route, params = self.match(request.method, path)
        if route is None:
            return await self.not_found_handler(request)
        request.params = params
        return await route.handler(request)

    async def handle(self, request:HTTPRequest) -> HTTPResponse:
        try:
            response = await self.dispatch(request)
        except QRDropError as e:
            logger.info('%s %s -> %s %s' % (request.method, request.path, e.status, e.message))
            response = HTTPResponse.text(e.status, e.message)
        except Exception as e:
            logger.exception('Unhandled error for %s %s' % (request.method, request.path))
            response = HTTPResponse.text(500, 'Internal Server Error')

        for name, value in CORS_HEADERS:
            response.set_header(name, value)
        return response

    async def __call__(self, request:HTTPRequest) -> HTTPResponse:
        return await self.handle(request)
