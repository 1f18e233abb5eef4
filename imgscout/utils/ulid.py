"""ULID generation utility for imgscout.

Session identifiers are ULIDs: 26 characters, Crockford Base32, sortable by
creation time and URL-safe, so they can be used directly in request paths.

Uses the `python-ulid` library (see pyproject.toml) — do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Example::

        session_id = generate_ulid()
        # "01KJ0JRVHYA7KX32VPN5ZSCTMV"
        assert len(session_id) == 26
    """
    return str(ULID())
