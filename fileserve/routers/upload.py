from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from ..deps import get_upload_handler
from ..errors import FileServeError, MethodNotAllowed
from ..services.upload import UploadHandler

router = APIRouter(tags=['upload'])

UPLOAD_PATH = '/upload'


@router.post(UPLOAD_PATH, response_class=PlainTextResponse)
async def upload(request: Request, handler: UploadHandler = Depends(get_upload_handler)):
    try:
        name = await handler.receive(request)
    except FileServeError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.reason)
    return PlainTextResponse(f'File {name} uploaded successfully.')


@router.api_route(UPLOAD_PATH, methods=['GET', 'HEAD', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'])
def reject_non_post():
    raise HTTPException(status_code=MethodNotAllowed.status_code, detail=MethodNotAllowed.default_reason, headers={'Allow': 'POST'})
