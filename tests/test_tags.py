"""Tests for tags.py module.

Tests the release tag policy.
"""

from datetime import date, datetime, timezone

import pytest

from monoship.errors import ConfigurationError
from monoship.tags import (
    FLOATING_TAG,
    ReleaseTags,
    compute_tags,
    normalize_date,
    short_revision,
    today_tag,
)


class TestNormalizeDate:
    """Tests for normalize_date function."""

    def test_compact_form(self) -> None:
        assert normalize_date("20250102") == "20250102"

    def test_iso_form(self) -> None:
        """ISO dates should be compacted."""
        assert normalize_date("2025-01-02") == "20250102"

    def test_date_object(self) -> None:
        assert normalize_date(date(2025, 1, 2)) == "20250102"

    @pytest.mark.parametrize("value", ["2025-1-2", "yesterday", "20251340", "2025010"])
    def test_invalid(self, value: str) -> None:
        """Malformed or impossible dates should raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            normalize_date(value)


class TestComputeTags:
    """Tests for compute_tags function."""

    def test_versioned_and_floating(self) -> None:
        """Should produce '{short-rev}-{date}' plus 'latest'."""
        tags = compute_tags("abcdef0123456789", "20250102")
        assert tags.versioned == "abcdef0-20250102"
        assert tags.floating == FLOATING_TAG == "latest"
        assert tags.as_list() == ["abcdef0-20250102", "latest"]

    def test_deterministic(self) -> None:
        """Identical inputs should give identical tags."""
        assert compute_tags("abc1234def", "2025-01-02") == compute_tags(
            "abc1234def", "20250102"
        )

    def test_different_revisions_differ(self) -> None:
        assert compute_tags("1111111aaa", "20250102") != compute_tags(
            "2222222bbb", "20250102"
        )

    def test_empty_revision_uses_date_only(self) -> None:
        """Without a revision the versioned tag is the date alone."""
        assert compute_tags("", "20250102") == ReleaseTags(versioned="20250102")

    def test_short_revision(self) -> None:
        assert short_revision("  0123456789  ") == "0123456"
        assert short_revision("abc") == "abc"


class TestTodayTag:
    """Tests for today_tag function."""

    def test_uses_given_time(self) -> None:
        now = datetime(2024, 12, 31, 23, 59, tzinfo=timezone.utc)
        assert today_tag(now) == "20241231"

    def test_default_is_valid(self) -> None:
        assert normalize_date(today_tag()) == today_tag()
