"""Release orchestration module.

This module handles:
- Per-service release state machine and results
- Concurrent release orchestration with failure isolation
- Release history records
"""

from monoship.release.models import PublishResult, ReleaseReport, ServiceRelease

__all__ = ["PublishResult", "ReleaseReport", "ServiceRelease"]

# Lazy imports for submodules to avoid circular imports
# Access via monoship.release.orchestrator, etc.
