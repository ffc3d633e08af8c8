"""Cache key derivation.

Keys always embed the caller's scope: two callers with different roles or
users never share an entry, even for byte-identical queries.

    list results:   "{collection}:list:{scope}:{params_digest}"
    single records: "{collection}:one:{scope}:{record_id}"

Scope parts are percent-encoded, so a scope never contains ``:`` even when
a user id does (OAuth subjects such as ``google-oauth2:1234``).
"""

import re
from urllib.parse import quote

from editorcore.core.types import Identity, ListParams

from .store import CacheStore


def scope_segment(identity: Identity) -> str:
    return f"{quote(str(identity.role), safe='')}/{quote(str(identity.user_id), safe='')}"


def list_key(collection: str, identity: Identity, params: ListParams) -> str:
    return f"{collection}:list:{scope_segment(identity)}:{params.digest()}"


def record_key(collection: str, identity: Identity, record_id) -> str:
    return f"{collection}:one:{scope_segment(identity)}:{record_id}"


def invalidate_record(cache: CacheStore, collection: str, record_id) -> int:
    """Invalidate everything a write to one record can make stale.

    Removes the record's entry for every scope plus every list entry of the
    collection, since any list page may contain (or now exclude) the record.

    Returns:
        Number of entries removed
    """
    prefix = re.escape(collection)
    removed = cache.invalidate_pattern(rf"^{prefix}:one:[^:]+:{re.escape(str(record_id))}$")
    removed += invalidate_lists(cache, collection)
    return removed


def invalidate_lists(cache: CacheStore, collection: str) -> int:
    """Invalidate every cached list page of a collection."""
    return cache.invalidate_pattern(rf"^{re.escape(collection)}:list:")
