"""
External cache backends.
"""

from .redis_backend import BACKEND_ERRORS, RedisBackend

__all__ = ["BACKEND_ERRORS", "RedisBackend"]
