"""Conversational ordering of bundles.

Native transcripts link each record to its predecessor via uuid/parentUuid.
When that graph exists the bundles follow a depth-first walk of it; otherwise
they are ordered by timestamp.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from token_nerd.core.models import Bundle, TranscriptRecord

logger = logging.getLogger(__name__)


def has_conversation_graph(records: Iterable[TranscriptRecord]) -> bool:
    """True when some record's uuid is named as another record's parentUuid."""
    records = list(records)
    uuids = {r.uuid for r in records if r.uuid}
    return any(r.parent_uuid in uuids for r in records if r.parent_uuid and r.parent_uuid != r.uuid)


def conversation_order(records: Iterable[TranscriptRecord]) -> list[str]:
    """Depth-first uuid order from the roots, siblings in file order.

    Records on a cycle or hanging off a missing parent are not reached.
    """
    ordered_records = sorted(records, key=lambda r: r.line_number)
    children: dict[str, list[str]] = {}
    roots: list[str] = []
    for record in ordered_records:
        if not record.uuid:
            continue
        if record.parent_uuid:
            children.setdefault(record.parent_uuid, []).append(record.uuid)
        else:
            roots.append(record.uuid)

    visited: set[str] = set()
    order: list[str] = []
    stack = list(reversed(roots))
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        order.append(current)
        stack.extend(reversed([c for c in children.get(current, ()) if c not in visited]))
    return order


def order_bundles(bundles: list[Bundle], records: list[TranscriptRecord]) -> list[Bundle]:
    """Reorder bundles conversationally; the input list is not modified.

    Bundles unreachable from a root keep their relative input order at the end.
    """
    if not has_conversation_graph(records):
        return sorted(bundles, key=lambda b: b.timestamp)

    by_uuid: dict[str, list[Bundle]] = {}
    for bundle in bundles:
        uuid = bundle.operations[0].uuid if bundle.operations else None
        if uuid:
            by_uuid.setdefault(uuid, []).append(bundle)

    ordered: list[Bundle] = []
    placed: set[int] = set()
    for uuid in conversation_order(records):
        for bundle in by_uuid.get(uuid, ()):
            ordered.append(bundle)
            placed.add(id(bundle))

    unreached = [b for b in bundles if id(b) not in placed]
    if unreached:
        logger.debug("%d bundle(s) unreachable from a conversation root", len(unreached))
    return ordered + unreached
