from __future__ import annotations

import os
from email.utils import formatdate
from typing import BinaryIO, Mapping

import anyio.to_thread
from starlette.responses import Response
from starlette.types import Receive, Scope, Send


class OpenFileResponse(Response):
    """Streams an already opened file.

    Unlike ``FileResponse`` this never reopens by path: headers and body both
    describe the inode the handler opened. The handle is closed once the body
    is sent or the client goes away.
    """

    chunk_size = 64 * 1024

    def __init__(
        self,
        handle: BinaryIO,
        stat_result: os.stat_result,
        media_type: str | None = None,
        headers: Mapping[str, str] | None = None,
    ):
        self.handle = handle
        merged = {k.lower(): v for k, v in (headers or {}).items()}
        merged.setdefault('content-length', str(stat_result.st_size))
        merged.setdefault('last-modified', formatdate(stat_result.st_mtime, usegmt=True))
        # content-length is already present, so the empty rendered body does not overwrite it.
        super().__init__(content=None, status_code=200, headers=merged, media_type=media_type)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await send({'type': 'http.response.start', 'status': self.status_code, 'headers': self.raw_headers})
            if scope['method'].upper() == 'HEAD':
                await send({'type': 'http.response.body', 'body': b'', 'more_body': False})
                return

            remaining = int(self.headers['content-length'])
            while remaining > 0:
                chunk = await anyio.to_thread.run_sync(self.handle.read, min(self.chunk_size, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                await send({'type': 'http.response.body', 'body': chunk, 'more_body': remaining > 0})
            if remaining > 0 or int(self.headers['content-length']) == 0:
                await send({'type': 'http.response.body', 'body': b'', 'more_body': False})
        finally:
            self.handle.close()
