"""Pseudonymous user handles.

A handle is the hex SHA-256 digest of the identity provider's stable subject
identifier. It is the storage key for every assignment, so raw subjects never
reach the mapping tables as keys.
"""

import hashlib


def user_handle(subject: str) -> str:
    """Return the 64-character hex handle for ``subject``."""
    return hashlib.sha256(subject.encode("utf-8")).hexdigest()
