"""
qrdrop file server

Wires the request-serving pieces together: one ServerContext per running
server holds the catalog, the rate limiter, the transfer counters and the
temporary artifacts, FileShareApp turns them into route handlers and
QRDropServer owns the listening socket, the background ticks and shutdown.
"""

import os
import atexit
import asyncio
import tempfile
import email.utils
import urllib.parse
from typing import Callable, List

from qrdrop import logger
from qrdrop.constants import DOWNLOAD_CHUNK_SIZE, ZIP_FILENAME, ZIP_CLEANUP_DELAY, RATE_LIMIT_CLEANUP_INTERVAL
from qrdrop.errors import QRDropError, NotFoundError, AccessDeniedError, FatalConfigError
from qrdrop.config import QRDropConfig
from qrdrop.catalog import FileCatalog, get_mime_type
from qrdrop.security import is_symlink, is_file_type_allowed
from qrdrop.rangeparser import parse_range_header
from qrdrop.ratelimit import RateLimiter
from qrdrop.accessguard import AccessGuard
from qrdrop.monitor import TransferMonitor
from qrdrop.upload import UploadHandler
from qrdrop.archive import PendingArtifacts, create_archive, create_archive_async
from qrdrop.network import NetworkInfo, detect_lan_ip, find_available_port, random_url_path, normalize_url_path
from qrdrop.ui import render_page
from qrdrop.http.messages import HTTPRequest, HTTPResponse
from qrdrop.http.router import Router
from qrdrop.http.server import HTTPServer
from qrdrop.transport.target import ServerTarget, ServerProto


def content_disposition(filename:str):
    return 'attachment; filename="%s"' % urllib.parse.quote(filename, safe='')


def zip_share_paths(share_paths:List[str]):
    """
    Packs the share paths into <tempdir>/qrdrop-files.zip for the --zip mode.

    Returns:
        tuple: (temp_dir, archive_path)
    """
    temp_dir = tempfile.mkdtemp(prefix='qrdrop-')
    archive_path, err = create_archive(share_paths, temp_dir)
    if err is not None:
        os.rmdir(temp_dir)
        raise FatalConfigError('Failed to create zip archive: %s' % err)
    final_path = os.path.join(temp_dir, ZIP_FILENAME)
    os.replace(archive_path, final_path)
    return temp_dir, final_path


class ServerContext:
    """
    Mutable state of one server instance. Only touched from the event loop thread.

    Args:
        share_paths (list): files and directories to share
        output_dir (str): upload destination
        allow_types (list): extension allow-list for downloads and uploads
        allow_ips (list): client IP allow-list (exact, CIDR, wildcard)
        rate_limit (int): requests per window per client, None disables limiting
        rate_limit_window (int): window length in seconds
        max_file_size (int): upload limit per file in bytes
        verbose (bool): log every request at INFO
    """

    def __init__(self, share_paths:List[str] = None, output_dir:str = '.', allow_types:List[str] = None,
                 allow_ips:List[str] = None, rate_limit:int = None, rate_limit_window:int = 60,
                 max_file_size:int = None, verbose:bool = False):
        share_paths = share_paths or []
        FileCatalog.validate_share_paths(share_paths)
        self.share_paths = share_paths
        self.output_dir = os.path.abspath(output_dir)
        self.allow_types = allow_types or []
        self.catalog = FileCatalog(share_paths)
        self.monitor = TransferMonitor()
        self.artifacts = PendingArtifacts()
        self.limiter = None
        if rate_limit is not None:
            self.limiter = RateLimiter(rate_limit, rate_limit_window)
        self.guard = AccessGuard(allow_ips, self.limiter, verbose)

        upload_kwargs = {}
        if max_file_size is not None:
            upload_kwargs['max_file_size'] = max_file_size
        self.upload_handler = UploadHandler(
            self.output_dir,
            monitor = self.monitor,
            allowed_types = self.allow_types,
            **upload_kwargs
        )

    @staticmethod
    def from_config(config:QRDropConfig, share_paths:List[str] = None):
        return ServerContext(
            share_paths = config.share_paths if share_paths is None else share_paths,
            output_dir = config.output,
            allow_types = config.allow_types,
            allow_ips = config.allow_ips,
            rate_limit = config.rate_limit,
            rate_limit_window = config.rate_limit_window,
            max_file_size = config.max_file_size,
            verbose = config.verbose or config.debug,
        )


class FileShareApp:
    """Route handlers of the HTTP API."""

    def __init__(self, context:ServerContext, stop_callback:Callable = None, print_cb = None):
        self.context = context
        self.stop_callback = stop_callback
        self.print_cb = print_cb

    async def print(self, msg = ''):
        if self.print_cb is None:
            return
        await self.print_cb(msg)

    def build_router(self, prefix:str = '') -> Router:
        router = Router(prefix)
        router.set_guard(self.context.guard)
        router.get('/', self.handle_index)
        router.get('/files', self.handle_list_files)
        router.get('/files/:filename', self.handle_file_download)
        router.get('/download-all', self.handle_download_all)
        router.post('/upload', self.handle_upload)
        router.post('/stop', self.handle_stop)
        return router

    async def handle_index(self, request:HTTPRequest):
        return HTTPResponse.html(render_page())

    async def handle_list_files(self, request:HTTPRequest):
        files = self.context.catalog.list_files(self.context.allow_types)
        return HTTPResponse.json([f.to_dict() for f in files])

    async def _stream_file(self, path:str, start:int, length:int, progress:dict):
        with open(path, 'rb') as f:
            if start > 0:
                f.seek(start)
            remaining = length
            while remaining > 0:
                chunk = f.read(min(DOWNLOAD_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk
                # counted once the chunk was handed to the connection
                progress['sent'] += len(chunk)

    def _streaming_response(self, path:str, name:str, status:int, headers:list, start:int, length:int, on_done:Callable = None):
        """
        Builds a response streaming [start, start+length) of path. The active
        transfer counter is held until the response is closed, whatever the outcome.
        """
        monitor = self.context.monitor
        progress = {'sent': 0}

        async def finished():
            monitor.transfer_finished()
            if progress['sent'] > 0:
                monitor.record_download(progress['sent'])
            if progress['sent'] == length:
                await self.print('Downloaded: %s' % name)
            else:
                logger.debug('Download of %s aborted after %d bytes' % (name, progress['sent']))
            if on_done is not None:
                on_done()

        monitor.transfer_started()
        response = HTTPResponse(status, headers, self._stream_file(path, start, length, progress))
        response.on_close(finished)
        return response

    async def handle_file_download(self, request:HTTPRequest):
        filename = request.params.get('filename', '')
        catalog = self.context.catalog

        path = catalog.resolve(filename)
        if path is None:
            raise NotFoundError('File not found')
        if is_symlink(path):
            logger.warning('Refused to serve symlink %s' % path)
            raise AccessDeniedError('Access denied')
        name = os.path.basename(path)
        if not is_file_type_allowed(name, self.context.allow_types):
            raise AccessDeniedError('File type not allowed')

        try:
            st = os.stat(path)
        except OSError:
            raise NotFoundError('File not found')
        if not os.path.isfile(path):
            raise NotFoundError('File not found')

        size = st.st_size
        headers = [
            ('Content-Type', get_mime_type(name)),
            ('Accept-Ranges', 'bytes'),
            ('Last-Modified', email.utils.formatdate(st.st_mtime, usegmt=True)),
            ('Content-Disposition', content_disposition(name)),
        ]

        # only the first requested range is served
        ranges = parse_range_header(request.get_header('range'), size)
        if ranges is not None:
            byte_range = ranges[0]
            headers.append(('Content-Range', byte_range.content_range(size)))
            headers.append(('Content-Length', str(byte_range.length)))
            return self._streaming_response(path, name, 206, headers, byte_range.start, byte_range.length)

        headers.append(('Content-Length', str(size)))
        return self._streaming_response(path, name, 200, headers, 0, size)

    async def handle_download_all(self, request:HTTPRequest):
        catalog = self.context.catalog
        if len(catalog) == 0:
            return HTTPResponse.json({'error': 'No files available'}, 404)

        archive_path, err = await create_archive_async(catalog.paths())
        if err is not None:
            logger.error('Failed to create zip archive: %s' % err)
            return HTTPResponse.json({'success': False, 'error': 'Failed to create zip archive'}, 500)

        artifacts = self.context.artifacts
        artifacts.add(archive_path)
        try:
            size = os.path.getsize(archive_path)
        except OSError:
            artifacts.discard(archive_path)
            raise

        headers = [
            ('Content-Type', 'application/zip'),
            ('Content-Length', str(size)),
            ('Content-Disposition', content_disposition(ZIP_FILENAME)),
        ]
        return self._streaming_response(
            archive_path, ZIP_FILENAME, 200, headers, 0, size,
            on_done = lambda: artifacts.cleanup_later(archive_path, ZIP_CLEANUP_DELAY)
        )

    async def handle_upload(self, request:HTTPRequest):
        monitor = self.context.monitor
        monitor.transfer_started()
        try:
            outcome = await self.context.upload_handler.handle(request.content_type, request.iter_body())
        except QRDropError as e:
            logger.info('Upload rejected: %s' % e.message)
            return HTTPResponse.json({'success': False, 'error': e.message}, e.status)
        except Exception as e:
            logger.exception('File upload error')
            return HTTPResponse.json({'success': False, 'error': str(e)}, 500)
        finally:
            monitor.transfer_finished()

        if outcome.success:
            if outcome.file_count > 1:
                await self.print('Received %d files: %s' % (outcome.file_count, ', '.join(outcome.filenames)))
            else:
                await self.print('Received: %s' % outcome.filenames[0])
        return HTTPResponse.json(outcome.to_dict(), outcome.status)

    async def handle_stop(self, request:HTTPRequest):
        response = HTTPResponse.json({'success': True, 'message': 'Server stopping...'})
        if self.stop_callback is not None:
            # fires once the response has been written out
            response.on_close(self.stop_callback)
        return response


class QRDropServer:
    """
    One running qrdrop instance.

    Args:
        config (QRDropConfig): merged configuration
        ssl_ctx (ssl.SSLContext): enables HTTPS when set
        print_cb: async callable receiving user facing status lines
    """

    def __init__(self, config:QRDropConfig, ssl_ctx = None, print_cb = None):
        self.config = config
        self.ssl_ctx = ssl_ctx
        self.print_cb = print_cb
        self.context:ServerContext = None
        self.app:FileShareApp = None
        self.http_server:HTTPServer = None
        self.network:NetworkInfo = None
        self.stop_evt = asyncio.Event()
        self.timed_out = False
        self.tasks = []

    def resolve_network(self):
        """Advertised host, bind address, port and URL prefix from the config."""
        config = self.config
        if config.host is not None:
            host = config.host
            bind_host = config.host
        else:
            host = detect_lan_ip()
            bind_host = '0.0.0.0'

        port = config.port
        if port is None:
            port = find_available_port(bind_host)

        url_path = config.url_path
        if url_path is None:
            url_path = random_url_path()
        return bind_host, NetworkInfo(host, port, normalize_url_path(url_path), self.ssl_ctx is not None)

    def build_context(self):
        share_paths = self.config.share_paths
        if self.config.zip is True and len(share_paths) > 0:
            FileCatalog.validate_share_paths(share_paths)
            temp_dir, archive_path = zip_share_paths(share_paths)
            context = ServerContext.from_config(self.config, [archive_path])
            context.artifacts.add(temp_dir)
            return context
        return ServerContext.from_config(self.config)

    def request_stop(self):
        """Stops the server shortly after the current response went out."""
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, self.stop_evt.set)

    async def _rate_limit_cleanup(self):
        while True:
            await asyncio.sleep(RATE_LIMIT_CLEANUP_INTERVAL)
            removed = self.context.limiter.cleanup()
            if removed > 0:
                logger.debug('Rate limiter: removed %d expired entries' % removed)

    async def _timeout_watch(self, timeout:int):
        await asyncio.sleep(timeout)
        self.timed_out = True
        logger.info('Timeout of %s seconds reached, shutting down' % timeout)
        self.stop_evt.set()

    async def start(self):
        bind_host, self.network = self.resolve_network()
        self.context = self.build_context()
        atexit.register(self.context.artifacts.remove_all)
        self.app = FileShareApp(self.context, self.request_stop, self.print_cb)
        router = self.app.build_router(self.network.url_path)

        protocol = ServerProto.SSL_TCP if self.ssl_ctx is not None else ServerProto.TCP
        target = ServerTarget(bind_host, self.network.port, protocol, ssl_ctx=self.ssl_ctx)
        self.http_server = HTTPServer(router, target)
        try:
            await self.http_server.start()
        except OSError as e:
            self.context.artifacts.cleanup_all()
            raise FatalConfigError('Cannot listen on %s:%s (%s)' % (bind_host, self.network.port, e))
        # port 0 binds an ephemeral port
        self.network.port = self.http_server.port

        if self.context.limiter is not None:
            self.tasks.append(asyncio.create_task(self._rate_limit_cleanup()))
        if self.config.keep_alive is False and self.config.timeout:
            self.tasks.append(asyncio.create_task(self._timeout_watch(self.config.timeout)))
        logger.debug('Serving %d files at %s' % (len(self.context.catalog), self.network.url))
        return self.network

    async def wait(self):
        await self.stop_evt.wait()

    async def stop(self):
        self.stop_evt.set()
        for task in self.tasks:
            task.cancel()
        self.tasks = []
        if self.http_server is not None:
            await self.http_server.close()
        if self.context is not None:
            self.context.artifacts.cleanup_all()
            logger.debug('Transfer stats: %s' % self.context.monitor.get_stats())

    async def run(self):
        await self.start()
        try:
            await self.wait()
        finally:
            await self.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
