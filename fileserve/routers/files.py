from __future__ import annotations

import os
import posixpath
from pathlib import Path
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.templating import Jinja2Templates

from ..deps import get_file_handler
from ..errors import FileServeError, MethodNotAllowed
from ..responses import OpenFileResponse
from ..services.file_serving import DirectoryListing, FileServingHandler

router = APIRouter(tags=['files'])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / 'templates'))

READ_METHODS = ['GET', 'HEAD']
WRITE_METHODS = ['POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']


def listing_href(base: str, name: str) -> str:
    # Names that are not valid UTF-8 carry surrogate escapes; quote their raw bytes.
    return quote(os.fsencode(posixpath.join(base, name)))


def display_name(name: str) -> str:
    return name.encode('utf-8', 'surrogateescape').decode('utf-8', 'replace')


@router.api_route('/{path:path}', methods=READ_METHODS)
def serve(request: Request, path: str, handler: FileServingHandler = Depends(get_file_handler)):
    try:
        served = handler.lookup(path)
    except FileServeError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.reason)

    if isinstance(served, DirectoryListing):
        # Links hang off the path the client asked for, mount prefix included.
        base = request.scope.get('root_path', '').rstrip('/') + '/' + path.strip('/')
        links = [{'href': listing_href(base, entry.name), 'name': display_name(entry.name)} for entry in served.entries]
        return templates.TemplateResponse(request, 'listing.html', {'links': links})

    return OpenFileResponse(served.handle, served.stat_result, media_type=served.media_type)


@router.api_route('/{path:path}', methods=WRITE_METHODS)
def reject_write(path: str):
    raise HTTPException(status_code=MethodNotAllowed.status_code, detail=MethodNotAllowed.default_reason, headers={'Allow': ', '.join(READ_METHODS)})
