"""Locale resolution for path-prefixed routes (``/{locale}/...``)."""
from __future__ import annotations

LOCALES: tuple[str, ...] = ("en", "nl", "pap", "es")
DEFAULT_LOCALE = "en"


def is_locale(value: str | None) -> bool:
    return bool(value) and value in LOCALES


def locale_from_path(path: str) -> str | None:
    """Return the locale in the first path segment, or None."""
    for segment in path.split("/"):
        if segment:
            return segment if is_locale(segment) else None
    return None


def _language_ranges(accept_language: str) -> list[str]:
    weighted: list[tuple[float, int, str]] = []
    for index, part in enumerate(accept_language.split(",")):
        pieces = [p.strip() for p in part.split(";")]
        tag = pieces[0].lower()
        if not tag or tag == "*":
            continue
        quality = 1.0
        for param in pieces[1:]:
            name, _, raw = param.partition("=")
            if name.strip() != "q":
                continue
            try:
                quality = float(raw)
            except ValueError:
                quality = 0.0
        if quality <= 0:
            continue
        weighted.append((-quality, index, tag))
    weighted.sort()
    return [tag for _, _, tag in weighted]


def guess_locale(accept_language: str | None) -> str:
    """Pick the best supported locale from an Accept-Language header."""
    for tag in _language_ranges(accept_language or ""):
        primary = tag.split("-", 1)[0]
        if primary in LOCALES:
            return primary
    return DEFAULT_LOCALE


def strip_locale(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    if parts and is_locale(parts[0]):
        parts = parts[1:]
    return "/" + "/".join(parts)


def with_locale(path: str, locale: str) -> str:
    if not path or path == "/":
        return f"/{locale}"
    if not path.startswith("/"):
        path = "/" + path
    return f"/{locale}{path}"
