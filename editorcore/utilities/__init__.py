"""Small helpers shared by entity definitions."""

from editorcore.utilities.slug import generate_slug, generate_unique_slug, is_valid_slug

__all__ = ["generate_slug", "generate_unique_slug", "is_valid_slug"]
