"""
Authentication and capability checks for the caching API.
"""

from .gate import ADMIN_OR_DEVOPS, Capability, Identity, TokenAuthenticator, authorize

__all__ = ["ADMIN_OR_DEVOPS", "Capability", "Identity", "TokenAuthenticator", "authorize"]
