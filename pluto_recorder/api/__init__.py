"""API layer for the stitcher session bootstrap."""

from .boot_api import BootAPI

__all__ = ["BootAPI"]
