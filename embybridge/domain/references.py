from __future__ import annotations

import re

from .errors import UnrecognizedReferenceError


# Alternatives are tried left to right; each one owns a single capture group.
_REFERENCE_PATTERN = re.compile(
    r"(?:https://y\.music\.163\.com/m/playlist\?id=([0-9]+))"
    r"|(?:https?://music\.163\.com/playlist/([0-9]+)/.*)"
    r"|(?:https?://music\.163\.com(?:/#)?/playlist\?id=(\d+))"
    r"|(?:^\s*(\d+)\s*$)"
)


def resolve_playlist_reference(reference: str) -> str:
    """Extract the canonical numeric playlist ID from a link or bare ID.

    Raises:
        UnrecognizedReferenceError: if the input matches no accepted shape
    """
    if not isinstance(reference, str):
        raise UnrecognizedReferenceError(f"Unrecognized playlist reference: {reference!r}")

    match = _REFERENCE_PATTERN.search(reference)
    if not match:
        raise UnrecognizedReferenceError(f"Unrecognized playlist reference: {reference!r}")

    playlist_id = next((group for group in match.groups() if group), None)
    if not playlist_id:
        raise UnrecognizedReferenceError(f"No playlist ID found in: {reference!r}")
    return playlist_id
