"""
Multipart upload handling

Request bodies are parsed incrementally: every file part is spooled into a
temporary file (memory first, disk once it grows) and only committed to the
output directory after the whole request was read and every part passed the
file-type check. Committing uses exclusive-create writes so concurrent uploads
of the same name never overwrite each other.
"""

import os
import re
import shutil
import asyncio
import tempfile
import urllib.parse
from typing import AsyncIterator, List

from qrdrop import logger
from qrdrop.constants import MAX_FILE_SIZE, MAX_FILES_PER_REQUEST, MAX_UPLOAD_ATTEMPTS
from qrdrop.errors import QRDropError, ValidationError, AccessDeniedError, CapacityError, TransientIOError
from qrdrop.security import is_file_type_allowed
from qrdrop.monitor import TransferMonitor
from qrdrop.common.naming import candidate_names, claim_first

DEFAULT_UPLOAD_NAME = 'uploaded-file'
SPOOL_MEMORY_LIMIT = 1024 * 1024
MAX_PART_HEADER_SIZE = 8192
COPY_BUFFER_SIZE = 1024 * 1024

_PARAM_RE = re.compile(r';\s*([\w\-\*]+)\s*=\s*("(?:[^"\\]|\\.)*"|[^;]*)')


def sanitize_filename(filename:str) -> str:
    """
    Strips path components and characters that are unsafe on common filesystems.

    Args:
        filename (str): name as supplied by the client

    Returns:
        str: bare basename, never empty
    """
    if not filename:
        return DEFAULT_UPLOAD_NAME
    safe_name = re.sub(r'[<>:"|?*\x00-\x1f]', '_', filename)
    safe_name = safe_name.replace('\\', '/')
    safe_name = safe_name.rsplit('/', 1)[-1].strip()
    if safe_name in ('', '.', '..'):
        return DEFAULT_UPLOAD_NAME
    if len(safe_name) > 255:
        base, ext = os.path.splitext(safe_name)
        safe_name = base[:250 - len(ext[:5])] + ext[:5]
    return safe_name


def parse_boundary(content_type:str) -> bytes:
    """Extracts the multipart boundary from a Content-Type header value."""
    if not content_type or not content_type.lower().startswith('multipart/form-data'):
        raise ValidationError('Only multipart/form-data uploads are supported')
    match = re.search(r'boundary=("[^"]+"|[^;\s]+)', content_type, re.IGNORECASE)
    if not match:
        raise ValidationError('Missing boundary in Content-Type')
    boundary = match.group(1).strip('"')
    if not boundary or len(boundary) > 200:
        raise ValidationError('Invalid multipart boundary')
    return boundary.encode('latin-1')


def parse_content_disposition(value:str):
    """
    'form-data; name="file"; filename="a.txt"' -> ('form-data', {'name': 'file', 'filename': 'a.txt'})
    """
    disposition, _, _ = value.partition(';')
    params = {}
    for key, raw in _PARAM_RE.findall(value):
        key = key.lower()
        raw = raw.strip()
        if raw.startswith('"') and raw.endswith('"') and len(raw) >= 2:
            raw = re.sub(r'\\(.)', r'\1', raw[1:-1])
        if key == 'filename*':
            # RFC 5987: charset'lang'percent-encoded
            charset, _, rest = raw.partition("'")
            _, _, encoded = rest.partition("'")
            try:
                raw = urllib.parse.unquote(encoded, encoding=charset or 'utf-8', errors='strict')
            except (LookupError, UnicodeDecodeError):
                continue
            key = 'filename'
            params[key] = raw
            continue
        params.setdefault(key, raw)
    return disposition.strip().lower(), params


class UploadPart:
    """One file part of a multipart request, spooled until it is committed."""

    def __init__(self, field_name:str, original_filename:str):
        self.field_name = field_name
        self.original_filename = original_filename
        self.filename = sanitize_filename(original_filename)
        self.size = 0
        self.error = None
        self.error_status = None
        self.complete = False
        self.spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY_LIMIT)

    def write(self, data:bytes, max_file_size:int):
        if self.error is not None or not data:
            return
        if self.size + len(data) > max_file_size:
            self.fail(CapacityError('File %s exceeds maximum size of %d bytes' % (self.filename, max_file_size)))
            return
        self.spool.write(data)
        self.size += len(data)

    def fail(self, error:QRDropError):
        self.error = error.message
        self.error_status = error.status
        self.close()

    def close(self):
        if self.spool is not None:
            self.spool.close()
            self.spool = None


class MultipartStreamProcessor:
    """
    Incremental multipart/form-data parser.

    Only parts with a filename in the field named `file` are kept; every
    other part is read and discarded. Boundaries split across chunks are
    handled by holding back the tail of the buffer.
    """

    def __init__(self, boundary:bytes, max_file_size:int = MAX_FILE_SIZE, max_files:int = MAX_FILES_PER_REQUEST, field_name:str = 'file'):
        self.delimiter = b'--' + boundary
        self.body_delimiter = b'\r\n' + self.delimiter
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.field_name = field_name

        self.buffer = b''
        self.state = 'preamble'  # 'preamble', 'headers', 'body', 'done'
        self.current:UploadPart = None
        self.skipping = False
        self.parts:List[UploadPart] = []

    def feed(self, chunk:bytes):
        if self.state == 'done':
            return
        self.buffer += chunk
        while True:
            if self.state == 'preamble':
                if not self._process_delimiter():
                    break
            elif self.state == 'headers':
                if not self._process_headers():
                    break
            elif self.state == 'body':
                if not self._process_body():
                    break
            else:
                break

    def finish(self) -> List[UploadPart]:
        """Called after the last chunk. Returns every collected part."""
        if self.state in ('headers', 'body'):
            self.cleanup()
            raise ValidationError('Truncated multipart body')
        self.buffer = b''
        return self.parts

    def _process_delimiter(self):
        pos = self.buffer.find(self.delimiter)
        if pos == -1:
            keep = len(self.delimiter) - 1
            if len(self.buffer) > keep:
                self.buffer = self.buffer[-keep:]
            return False

        after = pos + len(self.delimiter)
        if len(self.buffer) < after + 2:
            return False
        if self.buffer[after:after + 2] == b'--':
            self.state = 'done'
            self.buffer = b''
            return False

        # transport padding may follow the delimiter
        line_end = self.buffer.find(b'\r\n', after)
        if line_end == -1:
            if len(self.buffer) - after > 1024:
                raise ValidationError('Malformed multipart delimiter line')
            return False
        self.buffer = self.buffer[line_end + 2:]
        self.state = 'headers'
        return True

    def _process_headers(self):
        if self.buffer.startswith(b'\r\n'):
            header_section = b''
            self.buffer = self.buffer[2:]
        else:
            header_end = self.buffer.find(b'\r\n\r\n')
            if header_end == -1:
                if len(self.buffer) > MAX_PART_HEADER_SIZE:
                    raise ValidationError('Multipart headers too long or malformed')
                return False
            header_section = self.buffer[:header_end]
            self.buffer = self.buffer[header_end + 4:]

        if len(header_section) > MAX_PART_HEADER_SIZE:
            raise ValidationError('Multipart part headers too long')

        try:
            headers_text = header_section.decode('utf-8')
        except UnicodeDecodeError:
            headers_text = header_section.decode('latin-1')

        field_name = None
        filename = None
        for line in headers_text.split('\r\n'):
            name, _, value = line.partition(':')
            if name.strip().lower() != 'content-disposition':
                continue
            _, params = parse_content_disposition(value)
            field_name = params.get('name')
            filename = params.get('filename')

        self.current = None
        self.skipping = True
        if field_name == self.field_name and filename is not None:
            if len(self.parts) >= self.max_files:
                self.cleanup()
                raise ValidationError('Too many files in upload (max: %d)' % self.max_files)
            self.current = UploadPart(field_name, filename)
            self.parts.append(self.current)
            self.skipping = False

        self.state = 'body'
        return True

    def _process_body(self):
        pos = self.buffer.find(self.body_delimiter)
        if pos == -1:
            keep = len(self.body_delimiter) - 1
            if len(self.buffer) > keep:
                self._write(self.buffer[:-keep])
                self.buffer = self.buffer[-keep:]
            return False

        self._write(self.buffer[:pos])
        if self.current is not None:
            self.current.complete = True
        self.current = None
        # leave the delimiter in place for the preamble state
        self.buffer = self.buffer[pos + 2:]
        self.state = 'preamble'
        return True

    def _write(self, data:bytes):
        if self.skipping is True or self.current is None:
            return
        self.current.write(data, self.max_file_size)

    def cleanup(self):
        for part in self.parts:
            part.close()


class UploadOutcome:
    def __init__(self, success:bool, filename:str = None, size:int = None, error:str = None, status:int = 200):
        self.success = success
        self.filename = filename
        self.size = size
        self.error = error
        self.status = status

    def to_dict(self):
        result = {'success': self.success}
        if self.filename is not None:
            result['filename'] = self.filename
        if self.size is not None:
            result['size'] = self.size
        if self.error is not None:
            result['error'] = self.error
        return result


class UploadBatchOutcome:
    def __init__(self, outcomes:List[UploadOutcome]):
        self.outcomes = outcomes

    @property
    def succeeded(self):
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self):
        return [o for o in self.outcomes if not o.success]

    @property
    def success(self):
        return len(self.succeeded) > 0

    @property
    def filenames(self):
        return [o.filename for o in self.succeeded]

    @property
    def total_size(self):
        return sum(o.size for o in self.succeeded)

    @property
    def file_count(self):
        return len(self.succeeded)

    @property
    def status(self):
        if self.success:
            return 200
        return max([o.status for o in self.failed] + [400])

    def to_dict(self):
        result = {
            'success' : self.success,
            'filenames' : self.filenames,
            'totalSize' : self.total_size,
            'fileCount' : self.file_count,
            'errors' : [{'filename': o.filename, 'error': o.error} for o in self.failed],
        }
        if self.success:
            result['filename'] = self.filenames[0]
            result['size'] = self.succeeded[0].size
        else:
            result['error'] = '; '.join(o.error for o in self.failed)
        return result


class UploadHandler:
    """
    Receives multipart uploads into output_dir.

    Args:
        output_dir (str): directory uploads are written to, created on demand
        monitor (TransferMonitor): receives upload byte counts, optional
        max_file_size (int): per-file limit in bytes
        allowed_types (list): extension allow-list, empty allows everything
        max_attempts (int): unique-name candidates tried per file
        max_files (int): file parts accepted per request
    """

    def __init__(self, output_dir:str, monitor:TransferMonitor = None, max_file_size:int = MAX_FILE_SIZE,
                 allowed_types:List[str] = None, max_attempts:int = MAX_UPLOAD_ATTEMPTS, max_files:int = MAX_FILES_PER_REQUEST):
        self.output_dir = os.path.abspath(output_dir)
        self.monitor = monitor
        self.max_file_size = max_file_size
        self.allowed_types = allowed_types or []
        self.max_attempts = max_attempts
        self.max_files = max_files

    def ensure_output_directory(self):
        try:
            os.makedirs(self.output_dir, exist_ok=True)
        except OSError as e:
            raise QRDropError('Failed to create output directory: %s (%s)' % (self.output_dir, e))

    async def receive(self, content_type:str, body:AsyncIterator[bytes]) -> List[UploadPart]:
        """Reads the whole request body and returns the spooled file parts."""
        processor = MultipartStreamProcessor(
            parse_boundary(content_type),
            max_file_size = self.max_file_size,
            max_files = self.max_files,
        )
        try:
            async for chunk in body:
                processor.feed(chunk)
            return processor.finish()
        except BaseException:
            processor.cleanup()
            raise

    def _target_path(self, output_dir:str, name:str):
        path = os.path.abspath(os.path.join(output_dir, name))
        if os.path.dirname(path) != output_dir or name in ('.', '..'):
            raise AccessDeniedError('Invalid file path: %s' % name)
        return path

    def commit(self, part:UploadPart) -> UploadOutcome:
        """
        Writes a spooled part under the first free name. Runs in a worker thread.
        """
        output_dir = os.path.realpath(self.output_dir)

        def claim(candidate):
            path = self._target_path(output_dir, candidate)
            if os.path.lexists(path):
                return None
            # raises FileExistsError when another writer got here first
            with open(path, 'xb') as f:
                try:
                    part.spool.seek(0)
                    shutil.copyfileobj(part.spool, f, COPY_BUFFER_SIZE)
                except BaseException:
                    f.close()
                    os.unlink(path)
                    raise
            return path

        try:
            name, path = claim_first(candidate_names(part.filename, self.max_attempts), claim)
        except OSError as e:
            raise TransientIOError('Failed to write %s: %s' % (part.filename, e.strerror or e))
        if name is None:
            raise CapacityError(
                'Could not allocate a unique name for %s after %d attempts' % (part.filename, self.max_attempts),
                status = 500
            )
        return UploadOutcome(True, filename=name, size=part.size)

    async def handle(self, content_type:str, body:AsyncIterator[bytes]) -> UploadBatchOutcome:
        self.ensure_output_directory()
        parts = await self.receive(content_type, body)
        try:
            if len(parts) == 0:
                raise ValidationError('No file provided')

            disallowed = [p.filename for p in parts if not is_file_type_allowed(p.filename, self.allowed_types)]
            if len(disallowed) > 0:
                raise AccessDeniedError('File type not allowed: %s' % ', '.join(disallowed))

            loop = asyncio.get_running_loop()
            outcomes = []
            for part in parts:
                if part.error is not None:
                    outcomes.append(UploadOutcome(False, filename=part.filename, error=part.error, status=part.error_status))
                    continue
                try:
                    outcome = await loop.run_in_executor(None, self.commit, part)
                except QRDropError as e:
                    logger.warning('Upload of %s failed: %s' % (part.filename, e.message))
                    outcome = UploadOutcome(False, filename=part.filename, error=e.message, status=e.status)

                if outcome.success and self.monitor is not None:
                    self.monitor.record_upload(outcome.size)
                outcomes.append(outcome)

            return UploadBatchOutcome(outcomes)
        finally:
            for part in parts:
                part.close()
