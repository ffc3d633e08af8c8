"""PostgREST backend: async HTTP client and RecordStore implementation."""

from editorcore.postgrest.client import PostgRESTClient
from editorcore.postgrest.store import (
    PostgRESTRecordStore,
    build_params,
    map_response_error,
    parse_content_range,
)

__all__ = [
    "PostgRESTClient",
    "PostgRESTRecordStore",
    "build_params",
    "map_response_error",
    "parse_content_range",
]
