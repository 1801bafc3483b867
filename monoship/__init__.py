"""monoship - build and release orchestrator for polyglot monorepos.

This package builds one container image per service of a monorepo
(compiled binaries, bundled web assets or plain Dockerfile apps), tags it
deterministically and publishes it to a registry, fanning out across
services concurrently.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
