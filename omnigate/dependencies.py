"""Process-wide collaborators, built once at startup and handed to routes."""

import hmac
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from fastapi import Header, HTTPException, Request
from sqlalchemy.orm import Session

from omnigate.config import Settings, settings
from omnigate.database import SessionLocal
from omnigate.services.cache_service import CacheService, create_redis
from omnigate.services.channels import ChannelRegistry, build_registry
from omnigate.services.dispatch_service import OutboundDispatcher
from omnigate.services.forward_service import AutomationForwarder
from omnigate.services.media_service import MediaPipeline
from omnigate.services.notification_service import Notifier
from omnigate.services.storage_service import ObjectStorage


@dataclass
class Container:
    settings: Settings
    http_client: httpx.AsyncClient
    registry: ChannelRegistry
    storage: ObjectStorage
    cache: CacheService
    notifier: Notifier
    media: MediaPipeline
    dispatcher: OutboundDispatcher
    forwarder: AutomationForwarder
    session_factory: Callable[[], Session]


def build_container(app_settings: Settings) -> Container:
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(app_settings.outbound_timeout_seconds))
    redis_client = create_redis(app_settings.redis_url)
    registry = build_registry(http_client)
    storage = ObjectStorage.from_settings(app_settings)
    return Container(
        settings=app_settings,
        http_client=http_client,
        registry=registry,
        storage=storage,
        cache=CacheService(redis_client),
        notifier=Notifier(redis_client),
        media=MediaPipeline.from_settings(app_settings, storage, http_client),
        dispatcher=OutboundDispatcher.from_settings(app_settings, registry),
        forwarder=AutomationForwarder.from_settings(app_settings, http_client),
        session_factory=SessionLocal,
    )


async def close_container(container: Container) -> None:
    await container.http_client.aclose()
    await container.cache.close()


def get_container(request: Request) -> Container:
    return request.app.state.container


def require_internal_key(
    x_internal_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> None:
    expected = settings.internal_api_key
    if not expected:
        raise HTTPException(status_code=500, detail="INTERNAL_API_KEY not configured")

    provided = x_internal_key
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid internal key")
