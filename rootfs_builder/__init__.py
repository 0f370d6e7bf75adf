"""Rootfs Builder - staged root filesystem image builds.

This package clones base root filesystems, installs packages inside them
through a chrooted package manager (with user-mode emulation for foreign
architectures), caches recipe packages for reuse, and publishes the result.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
