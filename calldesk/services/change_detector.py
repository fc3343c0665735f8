"""
Change Detector.

Classifies call IDs from the latest reconciliation pass as new or known.
The first pass of a session only seeds the known set, so a fresh page
load does not report every existing call as new.
"""

from __future__ import annotations

from typing import Iterable


def detect_new(current_ids: Iterable[str], known_ids: Iterable[str]) -> set[str]:
    """Return IDs in ``current_ids`` missing from ``known_ids``; empty when nothing is known yet."""
    known = set(known_ids)
    if not known:
        return set()
    return set(current_ids) - known


class ChangeDetector:
    """Owns the known-ID set of one reconciliation session."""

    def __init__(self) -> None:
        self._known: set[str] = set()

    @property
    def known_ids(self) -> frozenset[str]:
        return frozenset(self._known)

    def detect_new(self, current_ids: Iterable[str]) -> set[str]:
        return detect_new(current_ids, self._known)

    def update_known(self, current_ids: Iterable[str]) -> set[str]:
        """Replace (not merge) the known set with ``current_ids``."""
        self._known = set(current_ids)
        return set(self._known)

    def observe(self, current_ids: Iterable[str]) -> set[str]:
        """Detect new IDs, then replace the known set. Returns the new IDs."""
        ids = set(current_ids)
        new_ids = self.detect_new(ids)
        self.update_known(ids)
        return new_ids
