"""
FastAPI dependencies for dependency injection.

This module provides the cache singleton and per-request services
(link store, referral service, deferred link service, current app).

Pattern: Dependency Injection
- Loose coupling between components
- Easy to test (override get_db / get_cache)
- Flexible (swap implementations via config)
"""

from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from deeplink_app.cache.factory import CacheBackend, CacheFactory
from deeplink_app.cache.strategies import CacheStrategy
from deeplink_app.config import settings
from deeplink_app.database.connection import get_db
from deeplink_app.errors import NotFoundError
from deeplink_app.models.app import App
from deeplink_app.services.app_resolver import AppResolver
from deeplink_app.services.deferred_service import DeferredLinkService
from deeplink_app.services.link_store import LinkStore
from deeplink_app.services.referral_service import ReferralService
from deeplink_app.services.signals import resolve_client_address


@lru_cache()
def get_cache() -> CacheStrategy:
    """
    Get cache instance (singleton).

    Factory gets config from settings internally.
    @lru_cache ensures this is called only once.
    """
    backend = CacheBackend(settings.cache_backend)
    return CacheFactory.create(backend)


def get_link_store(db: Session = Depends(get_db)) -> LinkStore:
    return LinkStore(db)


def get_referral_service(db: Session = Depends(get_db)) -> ReferralService:
    return ReferralService(db)


def get_deferred_service(
    store: LinkStore = Depends(get_link_store),
    referrals: ReferralService = Depends(get_referral_service)
) -> DeferredLinkService:
    """
    Get DeferredLinkService with all dependencies injected.

    Controller depends on service, service depends on infrastructure.
    Both collaborators share the request's database session.
    """
    return DeferredLinkService(store=store, referrals=referrals)


async def get_current_app(
    request: Request,
    db: Session = Depends(get_db),
    cache: CacheStrategy = Depends(get_cache)
) -> App:
    """Resolve the app from the request host, 404 if none is configured"""
    app = await AppResolver(db, cache).resolve(request.url.hostname)
    if app is None:
        raise NotFoundError("App not found")
    return app


def get_client_ip(request: Request) -> str:
    """Client address, honouring proxy headers only when TRUST_PROXY is set"""
    return resolve_client_address(
        request.headers,
        request.client.host if request.client else None,
        trust_proxy=settings.trust_proxy,
    )
