"""Tests for builds/cache.py module."""

import threading

import pytest

from monoship.builds.cache import (
    GO_BUILD_CACHE,
    CacheRegistry,
    CacheVolume,
    node_modules_key,
)


class TestCacheRegistry:
    """Tests for CacheRegistry."""

    def test_volume_is_idempotent(self) -> None:
        """The same key should always give the same handle."""
        registry = CacheRegistry()
        assert registry.volume(GO_BUILD_CACHE) is registry.volume(GO_BUILD_CACHE)

    def test_cache_id_is_namespaced(self) -> None:
        registry = CacheRegistry(namespace="acme")
        assert registry.volume("go-mod-cache").cache_id == "acme-go-mod-cache"

    def test_same_key_across_registries(self) -> None:
        """Separate runs should resolve a key to the same persistent storage."""
        first = CacheRegistry().volume("pnpm-store")
        second = CacheRegistry().volume("pnpm-store")
        assert first == second
        assert hash(first) == hash(second)

    def test_distinct_keys(self) -> None:
        registry = CacheRegistry()
        assert registry.volume("a") != registry.volume("b")

    @pytest.mark.parametrize("key", ["", "has space", "../x", "-leading"])
    def test_invalid_key(self, key: str) -> None:
        with pytest.raises(ValueError, match="Invalid cache key"):
            CacheRegistry().volume(key)

    def test_invalid_namespace(self) -> None:
        with pytest.raises(ValueError):
            CacheRegistry(namespace="bad namespace")

    def test_volumes_sorted(self) -> None:
        registry = CacheRegistry()
        registry.volume("zeta")
        registry.volume("alpha")
        assert [v.key for v in registry.volumes()] == ["alpha", "zeta"]

    def test_concurrent_requests_share_handle(self) -> None:
        """Concurrent callers asking for one key should share one handle."""
        registry = CacheRegistry()
        handles: list[CacheVolume] = []

        def request() -> None:
            handles.append(registry.volume("shared"))

        threads = [threading.Thread(target=request) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len({id(h) for h in handles}) == 1


class TestCacheVolume:
    """Tests for CacheVolume construction."""

    def test_direct_construction_rejected(self) -> None:
        """Handles can only come from a registry."""
        with pytest.raises(TypeError, match="CacheRegistry"):
            CacheVolume("go-build-cache", "monoship-go-build-cache")


class TestNodeModulesKey:
    """Tests for node_modules_key function."""

    def test_per_service(self) -> None:
        assert node_modules_key("web") == "pnpm-node-modules-web"
        assert node_modules_key("web") != node_modules_key("admin")

    def test_sanitizes(self) -> None:
        assert node_modules_key("web app") == "pnpm-node-modules-web-app"
