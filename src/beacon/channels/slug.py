from __future__ import annotations

import re

# ASCII-only word characters, matching how channel names have always been stored
_DISALLOWED = re.compile(r"[^\w\s-]", re.ASCII)
_SEPARATORS = re.compile(r"[\s_-]+", re.ASCII)


def slugify(text: str) -> str:
    """Convert a human-readable name into a channel slug.

    Lowercases, drops anything but ASCII letters, digits, whitespace,
    underscores and hyphens, then collapses separators into single hyphens.

    >>> slugify("Hello World")
    'hello-world'
    >>> slugify("snake_case_name")
    'snake-case-name'
    >>> slugify("Price: $99.99")
    'price-9999'
    """
    value = text.lower().strip()
    value = _DISALLOWED.sub("", value)
    value = _SEPARATORS.sub("-", value)
    return value.strip("-")
