from typing import Optional

from sqlalchemy.orm import Session

from deeplink_app.cache.strategies import CacheStrategy
from deeplink_app.models.app import App


class AppResolver:
    """
    Resolve the app a request belongs to from its host name.

    Uses Cache-Aside: host -> app id is cached, the App row itself is always
    loaded from the current session.
    """

    def __init__(self, db: Session, cache: Optional[CacheStrategy] = None):
        self.db = db
        self.cache = cache

    @staticmethod
    def _cache_key(hostname: str) -> str:
        return f"app:host:{hostname}"

    async def resolve(self, hostname: Optional[str]) -> Optional[App]:
        if not hostname:
            return None
        hostname = hostname.lower()
        cache_key = self._cache_key(hostname)

        if self.cache is not None:
            cached_id = await self.cache.get(cache_key)
            if cached_id:
                app = self.db.get(App, int(cached_id))
                if app is not None and hostname in app.domain_list:
                    return app
                # Stale mapping (app deleted or domains changed)
                await self.cache.delete(cache_key)

        # Domains are a comma-separated column, so match in Python
        app = next(
            (candidate for candidate in self.db.query(App).order_by(App.id).all()
             if hostname in candidate.domain_list),
            None
        )

        if app is not None and self.cache is not None:
            await self.cache.set(cache_key, str(app.id))
        return app
