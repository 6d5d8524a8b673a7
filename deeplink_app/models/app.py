from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from deeplink_app.clock import utcnow
from deeplink_app.database.connection import Base


class App(Base):
    """
    A mobile app served by this resolver.

    Managed by the admin surface; the deferred-link core only reads it to
    resolve the app from the request host and to apply referral settings.
    """
    __tablename__ = "apps"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    # Comma-separated host names, e.g. "go.example.com,links.example.com"
    domains = Column(String, nullable=False, default="")
    ios_app_store_url = Column(String, nullable=True)
    android_play_store_url = Column(String, nullable=True)
    web_fallback_url = Column(String, nullable=True)

    referral_enabled = Column(Boolean, default=False, nullable=False)
    referral_expiration_days = Column(Integer, default=30, nullable=False)
    referral_max_per_user = Column(Integer, nullable=True)  # None = unlimited

    created_at = Column(DateTime, default=utcnow, nullable=False)

    routes = relationship("Route", back_populates="app", cascade="all, delete-orphan")

    @property
    def domain_list(self) -> list:
        return [d.strip().lower() for d in (self.domains or "").split(",") if d.strip()]

    @property
    def primary_domain(self):
        domains = self.domain_list
        return domains[0] if domains else None

    def route_for_prefix(self, prefix: str):
        return next((route for route in self.routes if route.prefix == prefix), None)


class Route(Base):
    """A link prefix configured for an app: /{prefix}/{token}."""
    __tablename__ = "routes"
    __table_args__ = (UniqueConstraint("app_id", "prefix", name="uq_routes_app_prefix"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    prefix = Column(String, nullable=False)
    name = Column(String, nullable=False)
    web_fallback_url = Column(String, nullable=True)  # Overrides App.web_fallback_url

    app = relationship("App", back_populates="routes")
