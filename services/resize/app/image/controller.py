"""
Image pipeline — controller layer.

Receives validated input from the router, calls the ImageService, and turns
domain errors into HTTP exceptions. Thin glue layer between HTTP and the
resize orchestrator.
"""
from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from fastapi import Response

from app.exceptions import (
    DecodeError,
    ImageNotFound,
    ImageNotFoundError,
    ImageProcessingError,
    ImageProcessingFailed,
    InvalidImageData,
    MissingUploadFields,
    StorageError,
    UploadFailed,
)
from app.image.constants import CacheTier
from app.image.options import normalize_options, watermark_from_upload
from app.image.schemas import UploadRequest, UploadResponse

if TYPE_CHECKING:
    from app.config import Settings
    from app.image.service import ImageService

logger = logging.getLogger(__name__)

X_CACHE = {
    CacheTier.FAST: "HIT-FAST",
    CacheTier.STORAGE: "HIT-STORAGE",
    CacheTier.NONE: "MISS",
}


async def resize(
    path: str,
    query: Mapping[str, str],
    service: ImageService,
    settings: Settings,
) -> Response:
    options = normalize_options(query, settings)
    try:
        rendition = await service.render(path, options)
    except ImageNotFoundError:
        raise ImageNotFound()
    except (ImageProcessingError, StorageError):
        logger.exception("Error processing image %s", path)
        raise ImageProcessingFailed()

    return Response(
        content=rendition.data,
        media_type=rendition.content_type,
        headers={
            "Cache-Control": f"public, max-age={settings.cache_max_age}",
            "X-Cache": X_CACHE[rendition.tier],
        },
    )


def _decode_base64(payload: str) -> bytes:
    # tolerate data URLs: "data:image/png;base64,<payload>"
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        data = base64.b64decode(payload)
    except (binascii.Error, ValueError):
        raise InvalidImageData()
    if not data:
        raise InvalidImageData()
    return data


async def upload(request: UploadRequest, service: ImageService) -> UploadResponse:
    """Decode, optionally watermark, and store an original."""
    if not (request.image and request.path and request.content_type):
        raise MissingUploadFields()

    data = _decode_base64(request.image)
    watermark = watermark_from_upload(request.watermark)

    try:
        url = await service.upload(request.path, data, request.content_type, watermark)
    except DecodeError:
        raise InvalidImageData()
    except (ImageProcessingError, StorageError):
        logger.exception("Error uploading image %s", request.path)
        raise UploadFailed()

    return UploadResponse(path=request.path, url=url)
