"""Cross-bundle passes run after every record has become a Bundle.

- get_linked_operations(): the assistant call and the responses of one tool use
- enrich_tool_response_details(): name the tool behind each ToolResponse
- reconcile_multipart_turns(): count a split assistant turn once
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from token_nerd.core.estimation import format_operation_details, format_size_estimate
from token_nerd.core.models import Allocation, Bundle, JsonDict, Operation, RawOperationIndex

logger = logging.getLogger(__name__)


def _operations(bundles: Iterable[Bundle]) -> Iterator[Operation]:
    for bundle in bundles:
        yield from bundle.operations


def find_tool_use(op: Operation, tool_use_id: str) -> JsonDict | None:
    """The ``tool_use`` block with this id in an assistant response, if any."""
    if op.tool != "Assistant" or not isinstance(op.response, list):
        return None
    for block in op.response:
        if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("id") == tool_use_id:
            return block
    return None


def get_linked_operations(bundles: Iterable[Bundle], tool_use_id: str) -> list[Operation]:
    """Every Operation taking part in one tool use, oldest first.

    That is the assistant turn whose response carries the ``tool_use`` block,
    plus every Operation (tool response, system notice) tagged with its id.
    """
    linked: list[Operation] = []
    if not tool_use_id:
        return linked
    for op in _operations(bundles):
        if find_tool_use(op, tool_use_id) is not None:
            linked.append(op)
        if op.tool_use_id == tool_use_id:
            linked.append(op)
    return sorted(linked, key=lambda op: op.timestamp)


def enrich_tool_response_details(
    bundles: list[Bundle], raw_index: RawOperationIndex | None = None
) -> None:
    """Rewrite ToolResponse details as ``{Tool}: {detail} · {size} → ~{n} est``.

    Responses whose tool use cannot be found keep their size-only details.
    """
    tool_uses: dict[str, JsonDict] = {}
    for op in _operations(bundles):
        if op.tool != "Assistant" or not isinstance(op.response, list):
            continue
        for block in op.response:
            if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("id"):
                tool_uses.setdefault(block["id"], block)

    for op in _operations(bundles):
        if op.tool != "ToolResponse" or not op.tool_use_id:
            continue
        tool_use = tool_uses.get(op.tool_use_id)
        if tool_use is None:
            continue
        name = tool_use.get("name") or "Unknown"
        tool_input = tool_use.get("input")
        detail = format_operation_details(name, tool_input if isinstance(tool_input, dict) else {})
        raw = raw_index.for_tool_use(op.tool_use_id) if raw_index is not None else None
        size = raw.response_size if raw is not None and raw.response_size else op.response_size
        cost = format_size_estimate(size, op.tokens, exact=op.allocation is Allocation.EXACT)
        op.details = f"{name}: {detail} · {cost}"


def split_proportionally(total: int, weights: list[int]) -> list[int]:
    """Split ``total`` across ``weights`` with largest-remainder rounding.

    The shares always sum to ``total``; all-zero weights split evenly.
    """
    if not weights:
        return []
    if total <= 0:
        return [0] * len(weights)
    effective = weights if sum(weights) > 0 else [1] * len(weights)
    denominator = sum(effective)
    quotas = [total * w / denominator for w in effective]
    shares = [int(q) for q in quotas]
    leftover = total - sum(shares)
    # Ties go to the earlier part.
    order = sorted(range(len(quotas)), key=lambda i: (-(quotas[i] - shares[i]), i))
    for i in order[:leftover]:
        shares[i] += 1
    return shares


def _multipart_groups(bundles: Iterable[Bundle]) -> dict[tuple[bool, str], list[Operation]]:
    groups: dict[tuple[bool, str], list[Operation]] = {}
    for op in _operations(bundles):
        if op.tool != "Assistant" or op.allocation is not Allocation.EXACT or not op.message_id:
            continue
        groups.setdefault((op.is_sidechain, op.message_id), []).append(op)
    return {key: ops for key, ops in groups.items() if len(ops) > 1}


def reconcile_multipart_turns(bundles: list[Bundle]) -> int:
    """Count each split assistant turn once.

    A turn streamed as several content-part records repeats the same usage on
    every part. The turn's output tokens (the largest reported value) are
    spread over the parts by response size and the parts become PROPORTIONAL.
    Main-line and sidechain parts are grouped separately.

    Returns:
        Number of turns reconciled
    """
    groups = _multipart_groups(bundles)
    for (_sidechain, message_id), ops in groups.items():
        turn_total = max(op.tokens for op in ops)
        shares = split_proportionally(turn_total, [op.response_size for op in ops])
        for op, share in zip(ops, shares):
            op.tokens = share
            op.generation_cost = share
            op.allocation = Allocation.PROPORTIONAL
        logger.debug("split turn %s across %d parts (%d tokens)", message_id, len(ops), turn_total)

    if groups:
        for bundle in bundles:
            bundle.recompute_total()
    return len(groups)
