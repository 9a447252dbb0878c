"""
Storage layer for minute buckets.
"""

from powerwatt.storage.usage_store import UsageStore

__all__ = ["UsageStore"]
