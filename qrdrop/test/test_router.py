import pytest

from qrdrop.errors import NotFoundError
from qrdrop.http.messages import HTTPResponse
from qrdrop.http.router import Router, Route, normalize_prefix
from qrdrop.test.conftest import make_request


class DenyAll:
    def __init__(self):
        self.calls = 0
        self.logged = []

    def log(self, request):
        self.logged.append((request.method, request.path))
        return request.peer_ip

    def check(self, request):
        self.calls += 1
        return False, HTTPResponse.text(403, 'Access denied')


def make_router(prefix='/secret'):
    router = Router(prefix)

    async def index(request):
        return HTTPResponse.text(200, 'index')

    async def download(request):
        return HTTPResponse.text(200, 'file:%s' % request.params['name'])

    async def missing(request):
        raise NotFoundError('File not found')

    async def broken(request):
        raise RuntimeError('boom')

    router.get('/', index)
    router.get('/files/:name', download)
    router.get('/missing', missing)
    router.get('/broken', broken)
    return router


def test_normalize_prefix():
    assert normalize_prefix('') == ''
    assert normalize_prefix('/') == ''
    assert normalize_prefix('abc') == '/abc'
    assert normalize_prefix('/abc/') == '/abc'


def test_route_params_are_decoded():
    route = Route('GET', '/files/:name', None)
    assert route.match('GET', '/files/my%20file.txt') == {'name': 'my file.txt'}
    assert route.match('POST', '/files/a') is None
    assert route.match('GET', '/files/a/b') is None


@pytest.mark.asyncio
async def test_bare_prefix_redirects():
    response = await make_router().handle(make_request('GET', '/secret'))
    assert response.status == 301
    assert response.get_header('Location') == '/secret/'


@pytest.mark.asyncio
async def test_prefixed_routes():
    router = make_router()
    response = await router.handle(make_request('GET', '/secret/'))
    assert response.body == b'index'
    response = await router.handle(make_request('GET', '/secret/files/a%20b.txt'))
    assert response.body == b'file:a b.txt'


@pytest.mark.asyncio
async def test_paths_outside_the_prefix_are_not_found():
    router = make_router()
    for target in ('/', '/files/a.txt', '/secretx/', '/other/secret/'):
        response = await router.handle(make_request('GET', target))
        assert response.status == 404


@pytest.mark.asyncio
async def test_no_prefix():
    router = make_router('/')
    response = await router.handle(make_request('GET', '/files/x'))
    assert response.body == b'file:x'


@pytest.mark.asyncio
async def test_options_bypasses_the_guard():
    router = make_router()
    guard = DenyAll()
    router.set_guard(guard)
    response = await router.handle(make_request('OPTIONS', '/secret/upload'))
    assert response.status == 204
    assert response.get_header('Access-Control-Allow-Origin') == '*'
    assert guard.calls == 0
    assert guard.logged == [('OPTIONS', '/secret/upload')]


@pytest.mark.asyncio
async def test_guard_denial_keeps_cors_headers():
    router = make_router()
    router.set_guard(DenyAll())
    response = await router.handle(make_request('GET', '/secret/'))
    assert response.status == 403
    assert response.get_header('Access-Control-Allow-Methods') == 'GET, POST, OPTIONS'
    assert response.get_header('Access-Control-Allow-Headers') == 'Content-Type'


@pytest.mark.asyncio
async def test_handler_errors_become_responses():
    router = make_router()
    response = await router.handle(make_request('GET', '/secret/missing'))
    assert response.status == 404
    assert response.body == b'File not found'

    response = await router.handle(make_request('GET', '/secret/broken'))
    assert response.status == 500
    assert response.body == b'Internal Server Error'
    assert response.get_header('Access-Control-Allow-Origin') == '*'


@pytest.mark.asyncio
async def test_unknown_route_uses_not_found_handler():
    router = make_router()

    async def custom(request):
        return HTTPResponse.json({'error': 'nope'}, status=404)

    router.set_not_found_handler(custom)
    response = await router.handle(make_request('GET', '/secret/nothing'))
    assert response.status == 404
    assert response.body == b'{"error": "nope"}'


@pytest.mark.asyncio
async def test_first_registered_route_wins():
    router = Router()

    async def first(request):
        return HTTPResponse.text(200, 'first')

    async def second(request):
        return HTTPResponse.text(200, 'second')

    router.get('/files/:name', first)
    router.get('/files/special', second)
    response = await router.handle(make_request('GET', '/files/special'))
    assert response.body == b'first'


@pytest.mark.asyncio
async def test_method_mismatch_is_not_found():
    router = make_router()
    response = await router.handle(make_request('POST', '/secret/'))
    assert response.status == 404
