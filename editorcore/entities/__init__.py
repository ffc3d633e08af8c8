"""Entity definitions."""

from editorcore.entities.articles import ARTICLES, ArticleDraft, prepare_article

__all__ = ["ARTICLES", "ArticleDraft", "prepare_article"]
