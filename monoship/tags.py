"""Tag policy for published images.

Every release is published under two tags: a versioned tag derived from
the source revision and the release date, and the floating ``latest``
tag. Both always resolve to the same release.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone

from monoship.errors import ConfigurationError

FLOATING_TAG = "latest"
SHORT_REVISION_LENGTH = 7

_DATE_TAG = re.compile(r"^\d{8}$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class ReleaseTags:
    """Tags of one release.

    Attributes:
        versioned: ``{short-revision}-{YYYYMMDD}``, or just the date.
        floating: Always ``latest``.
    """

    versioned: str
    floating: str = FLOATING_TAG

    def as_list(self) -> list[str]:
        """Return tags in push order."""
        return [self.versioned, self.floating]


def normalize_date(value: str | date) -> str:
    """Normalize a release date to ``YYYYMMDD``.

    Args:
        value: ``YYYYMMDD`` or ``YYYY-MM-DD`` string, or a date.

    Returns:
        Date string in ``YYYYMMDD`` form.

    Raises:
        ConfigurationError: If the value is not a valid date.
    """
    if isinstance(value, date):
        return value.strftime("%Y%m%d")
    text = value.strip()
    if _ISO_DATE.match(text):
        text = text.replace("-", "")
    if not _DATE_TAG.match(text):
        raise ConfigurationError(f"Invalid release date '{value}', expected YYYYMMDD")
    try:
        datetime.strptime(text, "%Y%m%d")
    except ValueError as e:
        raise ConfigurationError(f"Invalid release date '{value}': {e}") from e
    return text


def today_tag(now: datetime | None = None) -> str:
    """Return today's UTC date as ``YYYYMMDD``."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d")


def short_revision(revision: str) -> str:
    """Return the first seven characters of a revision identifier."""
    return revision.strip()[:SHORT_REVISION_LENGTH]


def compute_tags(revision: str, release_date: str | date) -> ReleaseTags:
    """Compute the tags of a release.

    Args:
        revision: Source revision identifier; may be empty.
        release_date: Release date.

    Returns:
        ReleaseTags; deterministic for identical inputs.
    """
    date_part = normalize_date(release_date)
    short = short_revision(revision)
    versioned = f"{short}-{date_part}" if short else date_part
    return ReleaseTags(versioned=versioned)


__all__ = [
    "FLOATING_TAG",
    "ReleaseTags",
    "compute_tags",
    "normalize_date",
    "short_revision",
    "today_tag",
]
