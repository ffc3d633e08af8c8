"""editorcore: cached reads and conflict-aware writes for content editors."""

__version__ = "0.1.0"
