"""
Resize service — domain errors and HTTP exceptions.

Domain errors are plain exceptions raised by storage, the fast cache and the
image pipeline; they carry no HTTP knowledge. Controllers translate them into
the HTTP exceptions below, which use preset status codes and messages so that
callers never need to specify these at the call site. The shared error
handlers render both into the standard ``{"message": ...}`` envelope.
"""
from fastapi import HTTPException, status


# ── Storage ──────────────────────────────────────────────────────────────────

class StorageError(Exception):
    """Any object storage provider fault."""


class StorageUnavailable(StorageError):
    """Endpoint, bucket or credentials could not be verified."""


class ObjectNotFound(StorageError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Object not found: {path}")
        self.path = path


# ── Fast cache ───────────────────────────────────────────────────────────────

class FastCacheError(Exception):
    """Raised inside FastCache only; never escapes its public methods."""


# ── Image pipeline ───────────────────────────────────────────────────────────

class ImageProcessingError(Exception):
    pass


class DecodeError(ImageProcessingError):
    """The input bytes are not a decodable image."""


class TransformError(ImageProcessingError):
    """A transform step or the encoder rejected its input."""


class ImageNotFoundError(Exception):
    def __init__(self, path: str) -> None:
        super().__init__(f"Original image not found: {path}")
        self.path = path


# ── HTTP: images ─────────────────────────────────────────────────────────────

class ImageNotFound(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Image not found",
        )


class ImageProcessingFailed(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process image",
        )


class MissingUploadFields(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields",
        )


class InvalidImageData(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid image data",
        )


class UploadFailed(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload image",
        )


# ── HTTP: admin ──────────────────────────────────────────────────────────────

class FastCacheDisabled(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"success": False, "error": "Dragonfly cache is not enabled"},
        )


class PatternClearUnsupported(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Pattern-based cache clearing is not supported for Dragonfly",
        )


class CacheClearFailed(HTTPException):
    def __init__(self, backend: str) -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to clear {backend} cache",
        )


class CacheListFailed(HTTPException):
    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list MinIO cache",
        )
