from __future__ import annotations

import mimetypes
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Union

import structlog

from ..errors import IOFailure, NotFound, PathEscape
from .path_resolver import PathResolver
from .upload import is_upload_temp

logger = structlog.get_logger()

DEFAULT_MEDIA_TYPE = 'application/octet-stream'


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    is_dir: bool


@dataclass(frozen=True)
class DirectoryListing:
    path: Path
    entries: list[DirectoryEntry]


@dataclass(frozen=True)
class OpenFile:
    path: Path
    handle: BinaryIO
    stat_result: os.stat_result
    media_type: str


ServedEntry = Union[DirectoryListing, OpenFile]


def guess_media_type(path: Path) -> str:
    media_type, _ = mimetypes.guess_type(path.name)
    return media_type or DEFAULT_MEDIA_TYPE


class FileServingHandler:
    def __init__(self, resolver: PathResolver):
        self.resolver = resolver

    def lookup(self, request_path: str) -> ServedEntry:
        """Resolve ``request_path`` and return either a directory listing or an open file.

        Raises ``PathEscape``, ``NotFound`` or ``IOFailure``. An ``OpenFile``
        handle belongs to the caller, which must close it.
        """
        try:
            target = self.resolver.resolve(request_path)
        except PathEscape:
            logger.warning('path_escape_rejected', request_path=request_path)
            raise

        if is_upload_temp(target.name):
            raise NotFound()

        try:
            st = target.stat()
        except (FileNotFoundError, NotADirectoryError):
            raise NotFound()
        except OSError as exc:
            logger.error('file_stat_failed', path=str(target), error=str(exc))
            raise IOFailure() from exc

        if stat.S_ISDIR(st.st_mode):
            return DirectoryListing(path=target, entries=self.list_dir(target))
        if not stat.S_ISREG(st.st_mode):
            raise NotFound()
        return self.open_file(target)

    def list_dir(self, target: Path) -> list[DirectoryEntry]:
        items: list[DirectoryEntry] = []
        try:
            with os.scandir(target) as it:
                for entry in it:
                    if is_upload_temp(entry.name):
                        continue
                    try:
                        is_dir = entry.is_dir()
                    except OSError:
                        is_dir = False
                    items.append(DirectoryEntry(name=entry.name, is_dir=is_dir))
        except (FileNotFoundError, NotADirectoryError):
            raise NotFound()
        except OSError as exc:
            logger.error('directory_listing_failed', path=str(target), error=str(exc))
            raise IOFailure() from exc

        items.sort(key=lambda i: i.name)
        return items

    def open_file(self, target: Path) -> OpenFile:
        try:
            handle = target.open('rb')
        except (FileNotFoundError, NotADirectoryError):
            raise NotFound()
        except OSError as exc:
            logger.error('file_open_failed', path=str(target), error=str(exc))
            raise IOFailure() from exc

        # Size and body both come from the opened inode, so an upload renamed
        # over this path meanwhile cannot skew Content-Length.
        try:
            st = os.fstat(handle.fileno())
        except OSError as exc:
            handle.close()
            logger.error('file_stat_failed', path=str(target), error=str(exc))
            raise IOFailure() from exc

        if not stat.S_ISREG(st.st_mode):
            handle.close()
            raise NotFound()
        return OpenFile(path=target, handle=handle, stat_result=st, media_type=guess_media_type(target))
