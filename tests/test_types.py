"""Tests for shared type definitions."""

import pytest

from monoship.types import (
    ArtifactKind,
    BuildStrategy,
    FailurePolicy,
    Platform,
    ReleaseState,
)


class TestEnums:
    """Tests for enum values."""

    def test_build_strategy_values(self) -> None:
        """Strategy kinds should use their catalog spelling."""
        assert BuildStrategy("compiled") == BuildStrategy.COMPILED
        assert BuildStrategy("bundled") == BuildStrategy.BUNDLED
        assert BuildStrategy("passthrough") == BuildStrategy.PASSTHROUGH

    def test_artifact_kind_values(self) -> None:
        assert ArtifactKind.FILE.value == "file"
        assert ArtifactKind.DIRECTORY.value == "directory"

    def test_failure_policy_values(self) -> None:
        """fail-fast should keep its dashed spelling."""
        assert FailurePolicy("fail-fast") == FailurePolicy.FAIL_FAST
        assert FailurePolicy("isolate") == FailurePolicy.ISOLATE

    @pytest.mark.parametrize(
        ("state", "terminal"),
        [
            (ReleaseState.PENDING, False),
            (ReleaseState.BUILDING, False),
            (ReleaseState.PACKAGING, False),
            (ReleaseState.PUBLISHING, False),
            (ReleaseState.SUCCEEDED, True),
            (ReleaseState.FAILED, True),
        ],
    )
    def test_release_state_terminal(self, state: ReleaseState, terminal: bool) -> None:
        """Only succeeded and failed should be terminal."""
        assert state.is_terminal is terminal


class TestPlatform:
    """Tests for Platform parsing."""

    def test_parse(self) -> None:
        platform = Platform.parse("linux/arm64")
        assert platform.os == "linux"
        assert platform.arch == "arm64"
        assert str(platform) == "linux/arm64"

    def test_parse_strips_whitespace(self) -> None:
        assert Platform.parse(" linux/amd64 ") == Platform("linux", "amd64")

    @pytest.mark.parametrize("value", ["linux", "linux/", "/arm64", "linux/arm/v7", ""])
    def test_parse_invalid(self, value: str) -> None:
        """Malformed platform strings should be rejected."""
        with pytest.raises(ValueError, match="os/arch"):
            Platform.parse(value)
