"""
Database models for the deeplink resolver.

Apps and routes are read-only here (managed by the admin surface);
deferred links and referrals are owned by the core services.
"""

from .app import App, Route
from .deferred_link import DeferredLink, LinkKind
from .referral import Referral, ReferralStatus

__all__ = ["App", "Route", "DeferredLink", "LinkKind", "Referral", "ReferralStatus"]
