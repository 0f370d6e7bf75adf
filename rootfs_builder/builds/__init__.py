"""Build orchestration module.

This module handles:
- Job working directories
- Rootfs cloning, publishing and emulation environments
- Running commands inside a rootfs
- The staged build pipeline and build records
"""

from rootfs_builder.builds.models import BuildRecord

__all__ = ["BuildRecord"]

# Lazy imports for submodules to avoid circular imports
# Access via rootfs_builder.builds.pipeline, etc.
