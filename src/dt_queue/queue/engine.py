"""Queue engine: enqueue, execute with batching, clear, and read-only views."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field

from dt_queue.queue.actions import is_batchable, is_known_action
from dt_queue.queue.bridge.base import ActionExecutor
from dt_queue.queue.dispatch import TaskOutcome, UnitMember, dispatch_batched, dispatch_single
from dt_queue.queue.models import (
    ClearScope,
    EnqueueResult,
    ExecutionLogEntry,
    ExecutionSummary,
    QueueDocument,
    QueueStatus,
    QueueTask,
    TaskRunResult,
    TaskSpec,
    TaskStatus,
)
from dt_queue.queue.scheduler import grow_batch, unmet_dependencies
from dt_queue.queue.store import (
    DEFAULT_LOCK_RETRIES,
    DEFAULT_LOCK_RETRY_DELAY_SECONDS,
    LockUnavailable,
    QueueStore,
    queue_lock,
)
from dt_queue.queue.validator import ValidationError, ValidationReport, validate_queue
from dt_queue.queue.variables import resolve_params
from dt_queue.utils import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _RunState:
    """Mutable counters for one `execute` run."""

    context: dict[int, object]
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[TaskRunResult] = field(default_factory=list)


class QueueEngine:
    """Coordinates the queue store, validation, batching and the Action Executor."""

    def __init__(
        self,
        *,
        store: QueueStore,
        executor: ActionExecutor,
        lock_retries: int = DEFAULT_LOCK_RETRIES,
        lock_retry_delay_seconds: float = DEFAULT_LOCK_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.executor = executor
        self.lock_retries = lock_retries
        self.lock_retry_delay_seconds = lock_retry_delay_seconds
        self._sleep = sleep

    def load(self) -> QueueDocument:
        """Unlocked snapshot; may be stale while another process mutates."""

        return self.store.load()

    def validate(self) -> ValidationReport:
        return validate_queue(self.store.load())

    def enqueue(
        self,
        specs: Sequence[TaskSpec],
        *,
        mode: str | None = None,
        verbose: bool | None = None,
    ) -> EnqueueResult:
        """Append tasks with ids `max(existing) + 1, ...`; rejects unknown actions upfront."""

        unknown = [
            f"Invalid action: {spec.action}" for spec in specs if not is_known_action(spec.action)
        ]
        if unknown:
            raise ValidationError(unknown[0], errors=unknown)

        with self.locked():
            queue = self.store.load()
            if mode:
                queue.options.mode = mode
            if verbose is not None:
                queue.options.verbose = verbose

            added_at = utc_now_iso()
            task_ids: list[int] = []
            for spec in specs:
                task = QueueTask(
                    id=queue.next_task_id(),
                    action=spec.action,
                    params=dict(spec.params),
                    depends_on=list(spec.depends_on),
                    added_at=added_at,
                )
                queue.tasks.append(task)
                task_ids.append(task.id)
            self.store.save(queue)

        logger.info("Enqueued %d task(s) into %s", len(task_ids), queue.id)
        return EnqueueResult(queue_id=queue.id, task_ids=task_ids)

    def replace_tasks(self, specs: Sequence[TaskSpec]) -> QueueDocument:
        """Swap the whole task list for `specs`, renumbered from 1 and all pending."""

        with self.locked():
            queue = self.store.load()
            added_at = utc_now_iso()
            queue.tasks = [
                QueueTask(
                    id=index,
                    action=spec.action,
                    params=dict(spec.params),
                    depends_on=list(spec.depends_on),
                    added_at=added_at,
                )
                for index, spec in enumerate(specs, start=1)
            ]
            queue.status = QueueStatus.PENDING
            self.store.save(queue)
        logger.info("Replaced task list of %s with %d task(s)", queue.id, len(specs))
        return queue

    def clear(self, scope: ClearScope = ClearScope.COMPLETED) -> int:
        """Remove tasks by status scope, or the whole document for `ALL`."""

        with self.locked():
            queue = self.store.load()
            if scope == ClearScope.ALL:
                self.store.delete()
                return len(queue.tasks)
            target = TaskStatus.COMPLETED if scope == ClearScope.COMPLETED else TaskStatus.FAILED
            before = len(queue.tasks)
            queue.tasks = [task for task in queue.tasks if task.status != target]
            self.store.save(queue)
            return before - len(queue.tasks)

    def execute(self, *, dry_run: bool = False, verbose: bool | None = None) -> ExecutionSummary:
        """Run all pending tasks; always returns a summary and never raises."""

        try:
            with self.locked():
                return self._execute_locked(dry_run=dry_run, verbose=verbose)
        except LockUnavailable as error:
            logger.error("Queue execution not started: %s", error)
            return ExecutionSummary(success=False, queue_id=None, errors=[str(error)])
        except Exception as error:  # noqa: BLE001
            logger.exception("Queue execution aborted")
            return ExecutionSummary(success=False, queue_id=None, errors=[str(error)])

    @contextmanager
    def locked(self) -> Iterator[None]:
        with queue_lock(
            self.store,
            max_retries=self.lock_retries,
            retry_delay_seconds=self.lock_retry_delay_seconds,
            sleep=self._sleep,
        ):
            yield

    def _execute_locked(self, *, dry_run: bool, verbose: bool | None) -> ExecutionSummary:
        queue = self.store.load()
        if dry_run or queue.options.validate_before_execute:
            report = validate_queue(queue)
            if dry_run or not report.valid:
                if not report.valid:
                    logger.warning(
                        "Queue %s failed validation: %d error(s)",
                        queue.id,
                        len(report.errors),
                    )
                return ExecutionSummary(
                    success=report.valid,
                    queue_id=queue.id,
                    errors=list(report.errors),
                )

        started_at = utc_now_iso()
        queue.status = QueueStatus.EXECUTING
        self.store.save(queue)

        state = _RunState(
            context={
                task.id: task.result
                for task in queue.tasks
                if task.status == TaskStatus.COMPLETED and task.result is not None
            },
        )
        pending = queue.pending_tasks()
        logger.info("Executing queue %s: %d pending task(s)", queue.id, len(pending))

        index = 0
        while index < len(pending):
            task = pending[index]
            unmet = unmet_dependencies(task, queue)
            if unmet:
                task.status = TaskStatus.SKIPPED
                task.error = f"Unmet dependencies: {', '.join(str(dep) for dep in unmet)}"
                state.skipped += 1
                state.results.append(TaskRunResult(id=task.id, success=False, error=task.error))
                logger.warning("Skipping task %d, unmet dependencies %s", task.id, unmet)
                self.store.save(queue)
                index += 1
                continue

            batch = grow_batch(pending, index, queue)
            halt = self._run_unit(queue, batch, state)
            self.store.save(queue)
            index += len(batch)
            if halt:
                logger.warning("Stopping queue %s after failure (stopOnError)", queue.id)
                break

        queue.status = QueueStatus.FAILED if state.failed else QueueStatus.COMPLETED
        queue.execution_log.append(
            ExecutionLogEntry(
                started_at=started_at,
                finished_at=utc_now_iso(),
                status=queue.status,
                completed=state.completed,
                failed=state.failed,
                skipped=state.skipped,
            ),
        )
        self.store.save(queue)
        logger.info(
            "Queue %s finished: status=%s completed=%d failed=%d skipped=%d",
            queue.id,
            queue.status.value,
            state.completed,
            state.failed,
            state.skipped,
        )

        include_results = queue.options.verbose if verbose is None else verbose
        return ExecutionSummary(
            success=state.failed == 0,
            queue_id=queue.id,
            completed=state.completed,
            failed=state.failed,
            skipped=state.skipped,
            results=state.results if include_results else None,
        )

    def _run_unit(self, queue: QueueDocument, batch: list[QueueTask], state: _RunState) -> bool:
        """Dispatch one batch (or single task); return True when the run must halt."""

        action = batch[0].action
        try:
            members = [
                UnitMember(task=task, params=resolve_params(task.bindings(), state.context))
                for task in batch
            ]
            if is_batchable(action):
                if len(batch) > 1:
                    logger.info(
                        "Dispatching batched %s for tasks %s",
                        action,
                        [task.id for task in batch],
                    )
                outcomes = dispatch_batched(self.executor, action, members)
            else:
                result = dispatch_single(self.executor, action, members[0].params)
                outcomes = {batch[0].id: TaskOutcome(ok=True, result=result)}
        except Exception as error:  # noqa: BLE001
            outcomes = {task.id: TaskOutcome(ok=False, error=str(error)) for task in batch}

        executed_at = utc_now_iso()
        any_failed = False
        for task in batch:
            outcome = outcomes[task.id]
            task.executed_at = executed_at
            if outcome.ok:
                task.status = TaskStatus.COMPLETED
                task.result = outcome.result
                task.error = None
                if outcome.result is not None:
                    state.context[task.id] = outcome.result
                state.completed += 1
            else:
                task.status = TaskStatus.FAILED
                task.error = outcome.error
                state.failed += 1
                any_failed = True
                logger.warning("Task %d (%s) failed: %s", task.id, action, outcome.error)
            state.results.append(TaskRunResult(id=task.id, success=outcome.ok, error=task.error))
        return any_failed and queue.options.stop_on_error
