"""Persistent build cache volumes.

Cache volumes are named, persistent stores mounted read/write into build
environments (dependency downloads, compiler objects). The same key always
resolves to the same storage across orchestration runs.

Volumes can only be obtained through ``CacheRegistry.volume()``; there is
no public way to construct a handle that is not backed by a registry.
"""

from __future__ import annotations

import logging
import re
import threading

logger = logging.getLogger(__name__)

# Strategy-scoped keys shared by all services of an ecosystem
GO_MOD_CACHE = "go-mod-cache"
GO_BUILD_CACHE = "go-build-cache"
PNPM_STORE = "pnpm-store"

CACHE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._\-]*$")

_REGISTRY_TOKEN = object()


def node_modules_key(service: str) -> str:
    """Return the workspace-local dependency tree key for a service.

    Materialized dependency trees of two services can diverge even when
    their package stores overlap, so this key is never shared.
    """
    safe = re.sub(r"[^A-Za-z0-9._\-]", "-", service)
    return f"pnpm-node-modules-{safe}"


class CacheVolume:
    """Handle to a persistent cache volume.

    Attributes:
        key: Logical cache key, e.g. ``go-build-cache``.
        cache_id: Identifier of the underlying persistent storage.
    """

    __slots__ = ("cache_id", "key")

    def __init__(self, key: str, cache_id: str, _token: object = None) -> None:
        if _token is not _REGISTRY_TOKEN:
            raise TypeError(
                "CacheVolume cannot be constructed directly; "
                "use CacheRegistry.volume(key)"
            )
        self.key = key
        self.cache_id = cache_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CacheVolume):
            return NotImplemented
        return self.cache_id == other.cache_id

    def __hash__(self) -> int:
        return hash(self.cache_id)

    def __repr__(self) -> str:
        return f"<CacheVolume(key='{self.key}', cache_id='{self.cache_id}')>"


class CacheRegistry:
    """Registry of named cache volumes.

    ``volume()`` is idempotent and safe to call from concurrent tasks.

    Args:
        namespace: Prefix applied to every cache id, so several projects
            can share one build daemon without colliding.
    """

    def __init__(self, namespace: str = "monoship") -> None:
        if namespace and not CACHE_KEY_PATTERN.match(namespace):
            raise ValueError(f"Invalid cache namespace: {namespace!r}")
        self.namespace = namespace
        self._volumes: dict[str, CacheVolume] = {}
        self._lock = threading.Lock()

    def volume(self, key: str) -> CacheVolume:
        """Get the cache volume for a key.

        Args:
            key: Stable cache identifier.

        Returns:
            CacheVolume handle; the same handle for repeated calls.

        Raises:
            ValueError: If the key is empty or contains invalid characters.
        """
        if not CACHE_KEY_PATTERN.match(key):
            raise ValueError(f"Invalid cache key: {key!r}")
        with self._lock:
            existing = self._volumes.get(key)
            if existing is not None:
                return existing
            cache_id = f"{self.namespace}-{key}" if self.namespace else key
            volume = CacheVolume(key, cache_id, _token=_REGISTRY_TOKEN)
            self._volumes[key] = volume
            logger.debug("Registered cache volume %s", cache_id)
            return volume

    def volumes(self) -> list[CacheVolume]:
        """Return all volumes requested so far, sorted by key."""
        with self._lock:
            return [self._volumes[k] for k in sorted(self._volumes)]


__all__ = [
    "GO_BUILD_CACHE",
    "GO_MOD_CACHE",
    "PNPM_STORE",
    "CacheRegistry",
    "CacheVolume",
    "node_modules_key",
]
