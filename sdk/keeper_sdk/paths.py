"""
Path helpers for the keeper namespace.

Nodes are addressed by slash-delimited absolute paths:
- "/" is the root and always exists
- every other path has exactly one parent (prefix up to the last "/")

Invariants:
    - Validation happens before any request reaches a driver
    - Helpers never touch the network
"""

from __future__ import annotations

ROOT = "/"
SEPARATOR = "/"


def validate_path(path: str) -> str:
    """Check that a path is a well-formed absolute node path.

    Args:
        path: Candidate path

    Returns:
        The path unchanged

    Raises:
        TypeError: If path is not a string
        ValueError: If path is malformed
    """
    if not isinstance(path, str):
        raise TypeError(f"Invalid type for path (string expected): {path!r}")
    if not path.startswith(SEPARATOR):
        raise ValueError(f"Path must be absolute: {path!r}")
    if path == ROOT:
        return path
    if path.endswith(SEPARATOR):
        raise ValueError(f"Path must not end with '/': {path!r}")
    if "\x00" in path:
        raise ValueError(f"Path must not contain NUL characters: {path!r}")

    for segment in path[1:].split(SEPARATOR):
        if not segment:
            raise ValueError(f"Path has an empty segment: {path!r}")
        if segment in (".", ".."):
            raise ValueError(f"Relative segment {segment!r} not allowed: {path!r}")
    return path


def dirname(path: str) -> str:
    """Return the parent path ("/" for top-level nodes and for the root)."""
    head = path.rsplit(SEPARATOR, 1)[0]
    return head or ROOT


def basename(path: str) -> str:
    """Return the last segment of a path."""
    return path.rsplit(SEPARATOR, 1)[1]


def join(parent: str, child: str) -> str:
    """Join a parent path and a child name."""
    if parent == ROOT:
        return ROOT + child
    return parent + SEPARATOR + child


def sequence_number(name: str) -> int:
    """Extract the numeric suffix the service appends to sequential nodes.

    Example:
        >>> sequence_number("lock0000000012")
        12
    """
    digits = name[-10:]
    if len(digits) != 10 or not digits.isdigit():
        raise ValueError(f"Not a sequential node name: {name!r}")
    return int(digits)
