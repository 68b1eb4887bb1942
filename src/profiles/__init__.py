"""
User profile storage.

The profile service lives in src.profiles.service; it depends on the usage
ledger, which itself depends on the stores exported here.
"""

from .store import (
    InMemoryProfileStore,
    PostgresProfileStore,
    ProfileStore,
    get_profile_store,
    set_profile_store,
)

__all__ = [
    "InMemoryProfileStore",
    "PostgresProfileStore",
    "ProfileStore",
    "get_profile_store",
    "set_profile_store",
]
