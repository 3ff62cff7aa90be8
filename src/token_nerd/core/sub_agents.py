"""Fold delegated-task sidechains into synthetic sub-agent bundles.

A delegation is an assistant ``tool_use`` of the Task tool. Its sub-conversation
is written to the same transcript as sidechain records: the first one is the
user turn carrying the task prompt, and the rest hang off it through
uuid/parentUuid links.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from token_nerd.core.classifier import to_message
from token_nerd.core.linking import find_tool_use
from token_nerd.core.models import Bundle, JsonDict, Operation, ToolResultMessage, TranscriptRecord

logger = logging.getLogger(__name__)

# "Agent" is the newer name of the same delegation tool.
DELEGATION_TOOL_NAMES = frozenset({"Task", "Agent"})
DEFAULT_SUB_AGENT_TYPE = "general-purpose"
DEFAULT_TASK_DESCRIPTION = "Sub-agent task"


def _task_uses(op: Operation) -> list[JsonDict]:
    if op.tool != "Assistant" or not isinstance(op.response, list):
        return []
    return [
        block
        for block in op.response
        if isinstance(block, dict)
        and block.get("type") == "tool_use"
        and block.get("name") in DELEGATION_TOOL_NAMES
    ]


def _task_input(task_use: JsonDict) -> JsonDict:
    value = task_use.get("input")
    return value if isinstance(value, dict) else {}


def _bundle_uuid(bundle: Bundle) -> str | None:
    if not bundle.operations:
        return None
    op = bundle.operations[0]
    return op.uuid or op.message_id


def find_task_bundles(mainline: Iterable[Bundle]) -> list[Bundle]:
    """Main-line bundles holding at least one delegation."""
    return [b for b in mainline if any(_task_uses(op) for op in b.operations)]


def find_first_sidechain_bundle(sidechain: Iterable[Bundle], task_prompt: str) -> Bundle | None:
    """The sidechain user turn whose text is exactly the delegated prompt."""
    for bundle in sidechain:
        if not bundle.operations:
            continue
        op = bundle.operations[0]
        if op.tool == "User" and isinstance(op.response, str) and op.response == task_prompt:
            return bundle
    return None


def traverse_uuid_chain(
    start_uuid: str, sidechain: Iterable[Bundle], records: Iterable[TranscriptRecord]
) -> list[Bundle]:
    """Collect sidechain bundles reachable from ``start_uuid``.

    Iterative with a visited set, so parentUuid cycles (including a record
    that names itself as parent) terminate.
    """
    by_uuid: dict[str, Bundle] = {}
    for bundle in sidechain:
        uuid = _bundle_uuid(bundle)
        if uuid:
            by_uuid.setdefault(uuid, bundle)

    children: dict[str, list[str]] = {}
    for record in records:
        if not record.is_sidechain or not record.parent_uuid:
            continue
        child = record.uuid or record.id
        if child:
            children.setdefault(record.parent_uuid, []).append(child)

    visited: set[str] = set()
    collected: list[Bundle] = []
    stack = [start_uuid]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        bundle = by_uuid.get(current)
        if bundle is not None:
            collected.append(bundle)
        stack.extend(child for child in children.get(current, ()) if child not in visited)
    return collected


def create_sub_agent_bundle(collected: list[Bundle], task_use: JsonDict) -> Bundle:
    """Merge collected sidechain bundles into one sub-agent bundle."""
    task_id = task_use.get("id") or ""
    task_input = _task_input(task_use)
    sub_agent_type = task_input.get("subagent_type") or DEFAULT_SUB_AGENT_TYPE

    operations: list[Operation] = []
    for bundle in collected:
        for op in bundle.operations:
            op.parent_task_id = task_id
            op.sub_agent_type = sub_agent_type
            operations.append(op)
    operations.sort(key=lambda op: op.timestamp)
    if operations:
        operations[0].details = task_input.get("description") or DEFAULT_TASK_DESCRIPTION

    duration = operations[-1].timestamp - operations[0].timestamp if len(operations) > 1 else 0
    return Bundle.from_operations(
        f"subagent-{task_id}",
        operations,
        is_sub_agent=True,
        sub_agent_type=sub_agent_type,
        parent_task_id=task_id,
        operation_count=len(operations),
        duration=duration,
    )


def _completed_tool_use_ids(records: Iterable[TranscriptRecord]) -> set[str]:
    completed: set[str] = set()
    for record in records:
        message = to_message(record)
        if isinstance(message, ToolResultMessage) and message.tool_use_id:
            completed.add(message.tool_use_id)
    return completed


def process_sub_agents(
    mainline: list[Bundle], sidechain: list[Bundle], records: list[TranscriptRecord]
) -> list[Bundle]:
    """Build one sub-agent bundle per completed delegation with a reachable sidechain.

    A sidechain bundle belongs to at most one sub-agent: delegations sharing a
    prompt take the matching entry points in file order.
    """
    completed = _completed_tool_use_ids(records)
    sub_agents: list[Bundle] = []
    claimed: set[int] = set()
    for task_bundle in find_task_bundles(mainline):
        for op in task_bundle.operations:
            for task_use in _task_uses(op):
                task_id = task_use.get("id")
                if not task_id or task_id not in completed:
                    logger.debug("delegation %s has no tool_result, skipping", task_id)
                    continue
                prompt = _task_input(task_use).get("prompt") or ""
                unclaimed = [b for b in sidechain if id(b) not in claimed]
                entry = find_first_sidechain_bundle(unclaimed, prompt)
                start_uuid = _bundle_uuid(entry) if entry is not None else None
                if not start_uuid:
                    logger.debug("delegation %s has no sidechain entry point", task_id)
                    continue
                collected = traverse_uuid_chain(start_uuid, unclaimed, records)
                claimed.update(id(b) for b in collected)
                if collected:
                    sub_agents.append(create_sub_agent_bundle(collected, task_use))
    return sub_agents


def splice_sub_agents(ordered: list[Bundle], sub_agents: list[Bundle]) -> list[Bundle]:
    """Insert each sub-agent bundle right after the bundle that delegated it.

    Sub-agent bundles whose delegating bundle is absent go at the end.
    """
    pending: dict[str, list[Bundle]] = {}
    for sub_agent in sub_agents:
        pending.setdefault(sub_agent.parent_task_id or "", []).append(sub_agent)

    result: list[Bundle] = []
    for bundle in ordered:
        result.append(bundle)
        for task_id in list(pending):
            if task_id and any(find_tool_use(op, task_id) is not None for op in bundle.operations):
                result.extend(pending.pop(task_id))
    for leftovers in pending.values():
        result.extend(leftovers)
    return result
