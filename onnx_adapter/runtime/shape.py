"""Formatting of tensor shapes for diagnostics."""

from typing import Sequence


def format_shape(shape: Sequence[int]) -> str:
    """Render a dimension list as ``NxMxK``; an empty shape renders as ``""``."""
    return "x".join(str(dim) for dim in shape)
