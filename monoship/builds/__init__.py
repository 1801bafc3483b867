"""Build module.

This module handles:
- Cache volume registry
- Staged build environments
- Build substrate evaluation (Docker/BuildKit)
- Project builders per strategy kind
- Image packaging of build artifacts
"""

from monoship.builds.models import Artifact, BuiltImage, Image

__all__ = ["Artifact", "BuiltImage", "Image"]

# Lazy imports for submodules to avoid circular imports
# Access via monoship.builds.strategies, etc.
