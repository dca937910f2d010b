"""Slug helpers for base and custom items."""

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lowercase, collapse every non-alphanumeric run to ``-``, trim dashes.

    >>> slugify("  Travel Vaccination Advice!")
    'travel-vaccination-advice'
    """
    slug = _NON_ALNUM.sub("-", (text or "").lower()).strip("-")
    return slug or "item"


def unique_slug(text: str, taken) -> str:
    """Return ``slugify(text)``, suffixed ``-2``, ``-3`` … until not in ``taken``.

    ``taken`` is any container supporting ``in`` (a set of existing slugs, or
    a callable wrapped by the caller).
    """
    base = slugify(text)
    candidate = base
    n = 2
    while candidate in taken:
        candidate = f"{base}-{n}"
        n += 1
    return candidate
