"""
Ordered merging of console log batches.

Lines reach a session from the push channel (one at a time, newest end) and
from backfill pages (batches, usually at the oldest end). Both land here.

Invariants of every result:
    - no two lines share an id
    - ids are strictly ascending

Existing lines win over incoming lines with the same id, and within one
incoming batch the first occurrence wins. When a batch adds nothing the
existing tuple is returned as-is, which makes re-merging a batch idempotent.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

from console_stream.models import LogLine


def _dedupe_incoming(existing: Sequence[LogLine], incoming: Iterable[LogLine]) -> list[LogLine]:
    seen = {line.id for line in existing}
    fresh: list[LogLine] = []
    for line in incoming:
        if line.id in seen:
            continue
        seen.add(line.id)
        fresh.append(line)
    return fresh


def merge(existing: Sequence[LogLine], incoming: Iterable[LogLine]) -> Tuple[LogLine, ...]:
    """
    Merge a batch into an ordered log.

    Args:
        existing: Current log, strictly ascending by id.
        incoming: New lines in any order, possibly overlapping `existing`.

    Returns:
        Tuple[LogLine, ...]: The merged log, strictly ascending by id.
    """
    current = tuple(existing)
    if not is_strictly_ordered(current):
        current = tuple(sorted(_dedupe_incoming((), current), key=lambda line: line.id))
    fresh = _dedupe_incoming(current, incoming)
    if not fresh:
        return current

    fresh.sort(key=lambda line: line.id)
    if not current:
        return tuple(fresh)

    # Backward pagination: the whole page precedes the head
    if fresh[-1].id < current[0].id:
        return tuple(fresh) + current
    # Live delivery: everything follows the tail
    if fresh[0].id > current[-1].id:
        return current + tuple(fresh)

    # sorted() is stable; ids are unique at this point, so order is total
    return tuple(sorted(current + tuple(fresh), key=lambda line: line.id))


def is_strictly_ordered(lines: Sequence[LogLine]) -> bool:
    return all(prev.id < nxt.id for prev, nxt in zip(lines, lines[1:]))
