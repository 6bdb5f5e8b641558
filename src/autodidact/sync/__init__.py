"""Realtime collection sync."""

from .realtime import DEFAULT_COLLECTIONS, CollectionSpec, RealtimeStateSync

__all__ = ["CollectionSpec", "DEFAULT_COLLECTIONS", "RealtimeStateSync"]
