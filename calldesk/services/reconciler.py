"""
Reconciler.

Merges provider call records with overlay rows into the unified record
set. Pure: no I/O, same inputs always give the same output.

Precedence, per overlay-writable field: a non-empty overlay value wins,
otherwise the provider's value (or None) is kept. Everything else
(transcript, timestamps, recording, provider status) always comes from
the provider. Overlay rows without a provider record are left out.
"""

from __future__ import annotations

from typing import Any, Iterable

from calldesk.schemas.call import OVERLAY_FIELDS, CallRecord
from calldesk.schemas.overlay import OverlayRow


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def merge_record(record: CallRecord, row: OverlayRow) -> CallRecord:
    """Apply one overlay row on top of one provider record."""
    updates: dict[str, Any] = {
        "overlay_row_id": row.id,
        "overlay_version": row.version,
    }
    for name in OVERLAY_FIELDS:
        value = getattr(row, name)
        if not _is_empty(value):
            updates[name] = value
    return record.model_copy(update=updates)


def reconcile(
    provider_records: Iterable[CallRecord],
    overlay_rows: Iterable[OverlayRow],
) -> list[CallRecord]:
    """
    Build the unified record list, in provider order.

    Records without an overlay row are returned as fresh copies with
    ``processed=False``; the session re-applies its processed set later.
    """
    by_call_id = {row.call_id: row for row in overlay_rows}

    unified: list[CallRecord] = []
    for record in provider_records:
        row = by_call_id.get(record.call_id)
        if row is None:
            unified.append(record.model_copy(update={"processed": False}))
        else:
            unified.append(merge_record(record, row))
    return unified


def find_orphans(
    provider_records: Iterable[CallRecord],
    overlay_rows: Iterable[OverlayRow],
) -> list[OverlayRow]:
    """Overlay rows whose call is no longer returned by the provider."""
    known = {record.call_id for record in provider_records}
    return [row for row in overlay_rows if row.call_id not in known]
