"""Utility functions for image-melt."""

from .fs import make_scratch, remove_tree
from .whiteout import is_whiteout, whiteout_target

__all__ = ["make_scratch", "remove_tree", "is_whiteout", "whiteout_target"]
