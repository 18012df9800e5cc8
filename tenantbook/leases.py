"""
Lease overlap rules.

Two leases on the same unit conflict when their day ranges intersect
(end-exclusive) and both are in a blocking status.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from tenantbook.models import LeaseStatus
from tenantbook.schemas import parse_day

BLOCKING_STATUSES = (LeaseStatus.active.value, LeaseStatus.pending.value)


def _day(value: Any) -> Optional[date]:
    try:
        return parse_day(value)
    except ValueError:
        return None


def ranges_overlap(start: date, end: date, other_start: date, other_end: date) -> bool:
    return start < other_end and end > other_start


def find_blocking_overlaps(
    existing: Iterable[Dict[str, Any]],
    candidate: Dict[str, Any],
    blocking: Sequence[str] = BLOCKING_STATUSES,
) -> List[Dict[str, Any]]:
    """
    Leases in `existing` that block `candidate`.

    Leases on other units, the candidate itself, leases in a non-blocking
    status and leases missing either date are ignored.
    """
    cand_start = _day(candidate.get("lease_start"))
    cand_end = _day(candidate.get("lease_end"))
    unit = candidate.get("unit_id")
    if cand_start is None or cand_end is None or unit in (None, ""):
        return []

    conflicts = []
    for lease in existing:
        if str(lease.get("unit_id")) != str(unit):
            continue
        if candidate.get("id") is not None and str(lease.get("id")) == str(candidate["id"]):
            continue
        if lease.get("status") not in blocking:
            continue
        start = _day(lease.get("lease_start"))
        end = _day(lease.get("lease_end"))
        if start is None or end is None:
            continue
        if ranges_overlap(start, end, cand_start, cand_end):
            conflicts.append(lease)
    return conflicts


def overlap_message(action: str, unit_id: Any) -> str:
    return (
        f"Cannot {action} Active lease: unit {unit_id} already has an overlapping lease "
        f"({'/'.join(BLOCKING_STATUSES)})."
    )
