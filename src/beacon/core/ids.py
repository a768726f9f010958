from __future__ import annotations

import secrets
import string
import time
from typing import Final

_ALPHABET: Final[str] = string.ascii_lowercase + string.digits
_ID_LENGTH: Final[int] = 24


def generate_id(prefix: str | None = None) -> str:
    """Generate a collision-resistant, URL-safe identifier.

    The first character is always a letter; the rest mixes a base36
    millisecond timestamp with random characters.
    """
    first = secrets.choice(string.ascii_lowercase)
    stamp = _base36(int(time.time() * 1000))
    rest = "".join(secrets.choice(_ALPHABET) for _ in range(_ID_LENGTH - 1 - len(stamp)))
    value = f"{first}{stamp}{rest}"
    return f"{prefix}_{value}" if prefix else value


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[26:][rem] if rem < 10 else _ALPHABET[rem - 10])
    return "".join(reversed(digits)) or "0"
