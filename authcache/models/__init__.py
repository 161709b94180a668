"""Shared model base classes."""

from authcache.models.base import AuthCacheBaseModel


__all__ = ["AuthCacheBaseModel"]
