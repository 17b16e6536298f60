from __future__ import annotations

import os
import posixpath
import re
import tempfile
from pathlib import Path

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import ClientDisconnect, Request
from starlette.types import Message

from ..errors import BadRequest, IOFailure, PathEscape
from .path_resolver import PathResolver

logger = structlog.get_logger()

UPLOAD_FIELD = 'file'
CHUNK_SIZE = 1024 * 1024
MAX_NAME_BYTES = 255
# Multipart boundaries and part headers on top of the file bytes themselves.
FRAMING_ALLOWANCE = 64 * 1024
TEMP_SUFFIX = '.upload'
_TEMP_NAME = re.compile(r'\..*\.[a-z0-9_]{8}' + re.escape(TEMP_SUFFIX) + r'\Z', re.DOTALL)
_RESERVED_NAMES = {'.', '..'}


class UploadTooLarge(MultiPartException):
    pass


def reduce_basename(filename: str) -> str:
    """Keep only the final path segment of a client supplied filename."""
    normalized = filename.replace('\\', '/').rstrip('/')
    return posixpath.basename(normalized)


def is_upload_temp(name: str) -> bool:
    """True for the hidden ``.<name>.<random>.upload`` files an in-progress upload writes."""
    return _TEMP_NAME.match(name) is not None


def validate_basename(name: str) -> str:
    if not name.strip() or name in _RESERVED_NAMES or '\x00' in name:
        raise BadRequest('Invalid filename')
    if len(name.encode('utf-8', errors='surrogateescape')) > MAX_NAME_BYTES:
        raise BadRequest('Invalid filename')
    if is_upload_temp(name):
        raise BadRequest('Invalid filename')
    return name


def _fsync_dir(path: Path) -> None:
    dir_fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


class UploadHandler:
    def __init__(self, resolver: PathResolver, max_bytes: int):
        self.resolver = resolver
        self.max_bytes = max_bytes

    async def receive(self, request: Request) -> str:
        """Parse a multipart upload from ``request`` and store its ``file`` field under the root.

        Returns the stored filename. Raises ``BadRequest`` or ``IOFailure``.
        """
        form = await self.read_form(request)
        try:
            upload = form.get(UPLOAD_FIELD)
            if not isinstance(upload, UploadFile):
                raise BadRequest('Missing file field')

            name = validate_basename(reduce_basename(upload.filename or ''))
            try:
                dest = self.resolver.child(name)
            except PathEscape as exc:
                raise BadRequest('Invalid filename') from exc
            if dest.is_dir():
                raise BadRequest('Invalid filename')

            size = await self.store(upload, dest)
        except BadRequest as exc:
            logger.info('upload_rejected', reason=exc.reason)
            raise
        finally:
            await form.close()

        logger.info('upload_stored', name=name, size=size, client_filename=upload.filename)
        return name

    async def read_form(self, request: Request) -> FormData:
        content_type = request.headers.get('content-type', '')
        if not content_type.lower().startswith('multipart/form-data'):
            raise BadRequest('Expected multipart/form-data')

        # The exact cap applies to decoded file bytes in store(); the raw body
        # only has to fit the cap plus multipart framing.
        body_limit = self.max_bytes + FRAMING_ALLOWANCE
        declared = request.headers.get('content-length', '')
        if declared.isdigit() and int(declared) > body_limit:
            logger.info('upload_rejected', reason='declared length over limit', content_length=int(declared))
            raise BadRequest('Upload too large')

        received = 0

        async def capped_receive() -> Message:
            nonlocal received
            message = await request.receive()
            if message['type'] == 'http.request':
                received += len(message.get('body', b''))
                if received > body_limit:
                    raise UploadTooLarge('Upload too large')
            return message

        capped = Request(request.scope, receive=capped_receive)
        try:
            return await capped.form(max_files=1, max_fields=16)
        except (MultiPartException, HTTPException) as exc:
            reason = 'Upload too large' if received > body_limit else 'Malformed multipart body'
            logger.info('upload_rejected', reason=reason, received=received)
            raise BadRequest(reason) from exc
        except ClientDisconnect as exc:
            logger.info('upload_rejected', reason='client disconnected', received=received)
            raise BadRequest('Client disconnected') from exc

    async def store(self, upload: UploadFile, dest: Path) -> int:
        """Copy ``upload`` into a temporary sibling of ``dest`` and rename it into place.

        The temporary file is removed on any failure, including cancellation
        and content over ``max_bytes``, so a reader only ever sees the
        previous file or the complete new one.
        """
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f'.{dest.name[:64]}.', suffix='.upload', dir=str(dest.parent))
        except OSError as exc:
            logger.error('upload_failed', name=dest.name, stage='create', error=str(exc))
            raise IOFailure() from exc

        tmp_path = Path(tmp_name)
        written = 0
        committed = False
        try:
            with os.fdopen(fd, 'wb') as f:
                while chunk := await upload.read(CHUNK_SIZE):
                    if written + len(chunk) > self.max_bytes:
                        raise BadRequest('Upload too large')
                    await run_in_threadpool(f.write, chunk)
                    written += len(chunk)
                f.flush()
                await run_in_threadpool(os.fsync, f.fileno())
            os.replace(tmp_path, dest)
            committed = True
        except OSError as exc:
            logger.error('upload_failed', name=dest.name, stage='copy', error=str(exc))
            raise IOFailure() from exc
        finally:
            if not committed:
                tmp_path.unlink(missing_ok=True)

        try:
            _fsync_dir(dest.parent)
        except OSError as exc:
            logger.warning('upload_dir_fsync_failed', name=dest.name, error=str(exc))
        return written
