from __future__ import annotations

from functools import lru_cache
from typing import Callable

from django.conf import settings
from django.utils.module_loading import import_string


@lru_cache(maxsize=4)
def _load_decryptor(path: str) -> Callable[[str], str]:
    return import_string(path)


def resolve_secret(value: str | None) -> str:
    """Return the plaintext for a stored credential.

    When ``MIGRATION_SECRET_DECRYPTOR`` names a callable it is applied to the stored value;
    otherwise the value is used as-is.
    """
    if not value:
        return ""
    path = getattr(settings, "MIGRATION_SECRET_DECRYPTOR", "") or ""
    if not path:
        return value
    return _load_decryptor(path)(value)
