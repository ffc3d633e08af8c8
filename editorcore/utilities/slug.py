"""URL slug generation.

Handles accented and non-Latin text by transliterating to ASCII first:
"Café Münchën" -> "cafe-munchen".
"""

import re
from collections.abc import Awaitable, Callable

from unidecode import unidecode

# Symbols spelled out before stripping punctuation
REPLACEMENTS = {
    "&": " and ",
    "@": " at ",
    "%": " percent ",
    "+": " plus ",
    "=": " equals ",
    "$": " dollar ",
    "€": " euro ",
    "£": " pound ",
    "¥": " yen ",
    "©": " copyright ",
    "®": " registered ",
    "™": " trademark ",
    "°": " degree ",
    "№": " number ",
}

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def generate_slug(text: str | None, max_length: int | None = None, separator: str = "-") -> str:
    """Build a lowercase ASCII slug.

    Args:
        text: Source text (e.g. an article title)
        max_length: Truncate to this length, at a separator when one falls
            in the last 30%
        separator: Word separator

    Returns:
        Slug, or "" for empty input
    """
    if not text:
        return ""

    slug = str(text)
    for symbol, word in REPLACEMENTS.items():
        slug = slug.replace(symbol, word)

    slug = unidecode(slug).lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"[\s-]+", separator, slug).strip(separator)

    if max_length and len(slug) > max_length:
        slug = slug[:max_length]
        cut = slug.rfind(separator)
        if cut > max_length * 0.7:
            slug = slug[:cut]
        slug = slug.strip(separator)
    return slug


def is_valid_slug(slug: str | None, max_length: int = 200) -> bool:
    return bool(slug) and len(slug) <= max_length and SLUG_PATTERN.match(slug) is not None


async def generate_unique_slug(
    base: str,
    exists: Callable[[str], Awaitable[bool]],
    max_attempts: int = 100,
) -> str:
    """Append -1, -2, ... to ``base`` until ``exists`` reports a free slug."""
    slug = base
    for counter in range(1, max_attempts + 1):
        if not await exists(slug):
            return slug
        slug = f"{base}-{counter}"
    raise ValueError(f"No free slug for {base!r} after {max_attempts} attempts")
