"""Batch grouping for pending tasks walked in ascending id order."""

from __future__ import annotations

from collections.abc import Sequence

from dt_queue.queue.actions import is_batchable
from dt_queue.queue.models import QueueDocument, QueueTask, TaskStatus


def unmet_dependencies(task: QueueTask, queue: QueueDocument) -> list[int]:
    """Return `dependsOn` ids that are missing or not completed."""

    unmet: list[int] = []
    for dep_id in task.depends_on:
        dependency = queue.find_task(dep_id)
        if dependency is None or dependency.status != TaskStatus.COMPLETED:
            unmet.append(dep_id)
    return unmet


def grow_batch(
    pending: Sequence[QueueTask],
    start: int,
    queue: QueueDocument,
) -> list[QueueTask]:
    """Maximal contiguous run of same-action, mutually independent tasks at `start`.

    Non-batchable actions always yield a single-member batch. A candidate ends
    the run when it names any member via `dependsOn` or a variable reference,
    or when it has unmet dependencies of its own.
    """

    first = pending[start]
    batch = [first]
    if not is_batchable(first.action):
        return batch

    member_ids = {first.id}
    for candidate in pending[start + 1 :]:
        if candidate.status != TaskStatus.PENDING or candidate.action != first.action:
            break
        if member_ids & (set(candidate.depends_on) | candidate.referenced_task_ids()):
            break
        if unmet_dependencies(candidate, queue):
            break
        batch.append(candidate)
        member_ids.add(candidate.id)
    return batch
