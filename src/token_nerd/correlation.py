"""Correlation engine: transcript records + hook operations → ordered bundles.

One bundle per transcript record that classifies to a message; sidechain
records are folded into sub-agent bundles spliced after the turn that
delegated them.
"""

from __future__ import annotations

import logging
import os

from token_nerd.core.classifier import to_message
from token_nerd.core.linking import (
    enrich_tool_response_details,
    get_linked_operations,
    reconcile_multipart_turns,
)
from token_nerd.core.models import Bundle, RawOperationIndex, TranscriptRecord
from token_nerd.core.operation_factory import OperationFactory
from token_nerd.core.ordering import order_bundles
from token_nerd.core.sub_agents import process_sub_agents, splice_sub_agents
from token_nerd.io.operation_store import NullOperationStore, OperationStore
from token_nerd.io.perf_logging import monitor_slow_path
from token_nerd.io.transcript import read_transcript

logger = logging.getLogger(__name__)

__all__ = ["build_bundles", "correlate_operations", "fetch_raw_index", "get_linked_operations"]


def fetch_raw_index(session_id: str, store: OperationStore) -> RawOperationIndex:
    """Index the session's hook operations; empty when the store is down."""
    with monitor_slow_path(
        "correlation.fetch_operations", logger=logger, context={"session_id": session_id}
    ):
        if not store.is_available():
            logger.debug("operation store not available, using transcript estimates only")
            return RawOperationIndex()
        return RawOperationIndex(store.fetch_operations(session_id))


def _time_gap_seconds(previous: TranscriptRecord | None, record: TranscriptRecord) -> float:
    if previous is None or not previous.timestamp or not record.timestamp:
        return 0.0
    return max(0.0, (record.timestamp - previous.timestamp) / 1000)


def build_bundles(
    session_id: str, records: list[TranscriptRecord], raw_index: RawOperationIndex
) -> list[Bundle]:
    """One single-operation bundle per record that produces an Operation, in file order."""
    factory = OperationFactory(session_id, raw_index)
    bundles: list[Bundle] = []
    previous: TranscriptRecord | None = None
    for record in records:
        operation = factory.create(to_message(record), _time_gap_seconds(previous, record))
        previous = record
        if operation is None:
            continue
        bundles.append(Bundle.from_operations(record.id, [operation]))
    return bundles


def correlate_operations(
    session_id: str,
    transcript_path: str | os.PathLike | None,
    store: OperationStore | None = None,
) -> list[Bundle]:
    """Reconstruct the per-turn token accounting of one session.

    Args:
        session_id: session whose hook operations to pair with the transcript
        transcript_path: the session's JSONL transcript
        store: operation store handle; without one every cost not carried
            by the transcript is estimated

    Returns:
        Bundles in conversational order, with sub-agent bundles placed
        right after their delegating turn. Empty for a missing or empty
        transcript.
    """
    if not transcript_path:
        return []
    with monitor_slow_path(
        "correlation.correlate_operations",
        logger=logger,
        context={"session_id": session_id, "path": str(transcript_path)},
    ):
        records = read_transcript(transcript_path)
        if not records:
            return []

        raw_index = fetch_raw_index(session_id, store if store is not None else NullOperationStore())
        bundles = build_bundles(session_id, records, raw_index)

        mainline = [b for b in bundles if not b.is_sidechain]
        sidechain = [b for b in bundles if b.is_sidechain]
        sub_agents = process_sub_agents(mainline, sidechain, records)

        folded = {id(op) for sub_agent in sub_agents for op in sub_agent.operations}
        dropped = sum(1 for b in sidechain if id(b.operations[0]) not in folded)
        if dropped:
            logger.debug("%d sidechain bundle(s) not reached by any delegation", dropped)

        reconcile_multipart_turns(mainline + sub_agents)
        enrich_tool_response_details(mainline + sub_agents, raw_index)

        ordered = order_bundles(mainline, records)
        result = splice_sub_agents(ordered, sub_agents)
        logger.debug(
            "correlated session %s: %d record(s) → %d bundle(s), %d sub-agent(s), %d hook op(s)",
            session_id,
            len(records),
            len(result),
            len(sub_agents),
            len(raw_index),
        )
        return result
