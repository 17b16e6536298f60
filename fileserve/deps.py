from __future__ import annotations

from fastapi import Request

from .services.file_serving import FileServingHandler
from .services.upload import UploadHandler


def get_file_handler(request: Request) -> FileServingHandler:
    return request.app.state.file_handler


def get_upload_handler(request: Request) -> UploadHandler:
    return request.app.state.upload_handler
