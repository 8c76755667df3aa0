# apidoc_hub/utils/__init__.py
"""Utility modules for apidoc_hub."""

from .atomic_io import atomic_write_bytes, purge_temp_files

__all__ = ["atomic_write_bytes", "purge_temp_files"]
