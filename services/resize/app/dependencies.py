"""
Resize service — request-scoped accessors for the collaborators built in
``create_app`` and parked on ``app.state``.
"""
from __future__ import annotations

from fastapi import Request

from app.config import Settings
from app.fast_cache import FastCache
from app.image.service import ImageService
from app.monitoring import MonitoringService
from app.storage import ObjectStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_fast_cache(request: Request) -> FastCache:
    return request.app.state.fast_cache


def get_monitoring(request: Request) -> MonitoringService:
    return request.app.state.monitoring


def get_image_service(request: Request) -> ImageService:
    return request.app.state.image_service
