"""
Image pipeline — HTTP routes.

Resize and health are public; upload requires an API key when
ENABLE_API_KEY_AUTH is set.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status

from app.config import Settings
from app.dependencies import get_image_service, get_settings
from app.image import controller
from app.image.schemas import HealthResponse, UploadRequest, UploadResponse
from app.image.service import ImageService
from shared.auth import require_api_key

router = APIRouter(prefix="/images", tags=["images"])

_RESIZE_DESCRIPTION = """
Transforms the original stored at `path` and returns the encoded bytes.

Query parameters (all optional, all strings):

* `width`, `height` — bounding box; the image is fitted inside it, never
  enlarged. Defaults and upper limits are MAX_WIDTH / MAX_HEIGHT.
* `format` — `webp` (default), `jpeg`/`jpg`, `png`. `quality` — encoder quality.
* `rotate` (degrees clockwise), `flip`, `flop`, `grayscale`, `sharpen`
  (`true` to enable), `blur` (sigma).
* `watermarkText` or `watermarkImage` (storage path), `watermarkPosition`
  (`top-left`, `top-right`, `bottom-left`, `bottom-right`, `center`,
  `repeat-45deg`), `watermarkOpacity` (0..1).
* `cropLeft`, `cropTop`, `cropWidth`, `cropHeight` — applied before resizing.

`X-Cache` reports where the bytes came from: `HIT-FAST`, `HIT-STORAGE`, `MISS`.
"""


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Image endpoint liveness",
)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get(
    "/resize/{path:path}",
    summary="Resize and transform an image",
    description=_RESIZE_DESCRIPTION,
    response_class=Response,
    responses={
        200: {"content": {"image/webp": {}, "image/jpeg": {}, "image/png": {}}},
        404: {"description": "Original image not found"},
    },
)
async def resize(
    path: str,
    request: Request,
    service: ImageService = Depends(get_image_service),
    settings: Settings = Depends(get_settings),
) -> Response:
    return await controller.resize(path, request.query_params, service, settings)


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Upload an original image",
    description=(
        "Stores a base64-encoded original at `path`. An optional watermark is "
        "burned in before storing. Returns the URL the original is served from."
    ),
    dependencies=[Depends(require_api_key)],
)
async def upload(
    body: UploadRequest,
    service: ImageService = Depends(get_image_service),
) -> UploadResponse:
    return await controller.upload(body, service)
