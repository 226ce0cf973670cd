"""Email domain helpers used for automatic account membership."""

from __future__ import annotations

import re
from collections.abc import Iterable

__all__ = [
    "DomainValidationError",
    "email_domain",
    "format_domains",
    "normalize_domains",
    "split_domains",
]

_DOMAIN_PATTERN = re.compile(
    r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)


class DomainValidationError(ValueError):
    pass


def email_domain(email: str | None) -> str | None:
    """Return the lowercased domain of ``email`` or ``None`` when it has none."""

    candidate = (email or "").strip()
    if "@" not in candidate:
        return None
    domain = candidate.rsplit("@", 1)[1].strip().lower()
    return domain or None


def normalize_domains(values: Iterable[str] | None) -> list[str]:
    """Lowercase, validate and deduplicate ``values`` preserving order."""

    seen: dict[str, None] = {}
    for value in values or ():
        domain = value.strip().lower()
        if not domain:
            continue
        if not _DOMAIN_PATTERN.match(domain):
            raise DomainValidationError(f"Invalid email domain '{value.strip()}'")
        seen.setdefault(domain, None)
    return list(seen)


def split_domains(stored: str | None) -> list[str]:
    if not stored:
        return []
    return [part.strip() for part in stored.split(",") if part.strip()]


def format_domains(domains: Iterable[str]) -> str | None:
    joined = ",".join(domains)
    return joined or None
