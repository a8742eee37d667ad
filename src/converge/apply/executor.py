"""Apply executor: run a ChangeSet against a provider under the state lock."""

import copy
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional
from ..graph.models import Ref
from ..graph.references import evaluate
from ..plan.models import Change, ChangeAction, ChangeSet
from ..provider.base import Provider
from ..state.models import Lock, ResourceState, StateSnapshot
from ..state.store import StateStore
from ..utils.errors import ConflictError, FatalProviderError, LockError, ProviderError, StateError
from ..utils.logging import get_logger
from .models import ApplyResult, ApplyStatus, OperationFailure, OperationRecord
from .retry import RetryPolicy, call_with_retry

logger = get_logger("apply.executor")

_VERBS = {
    ChangeAction.CREATE: ("Creating", "Created"),
    ChangeAction.UPDATE: ("Updating", "Updated"),
    ChangeAction.DESTROY: ("Destroying", "Destroyed"),
}


class _SnapshotBuffer:
    """In-progress copy of the snapshot, updated as each operation completes."""

    def __init__(self, prior: StateSnapshot):
        self._guard = threading.Lock()
        self.resources: Dict[str, ResourceState] = copy.deepcopy(prior.resources)

    def lookup(self, ref: Ref) -> Any:
        with self._guard:
            record = self.resources.get(ref.address)
            if record is None:
                raise FatalProviderError(f"referenced resource {ref.address} is not in state")
            try:
                return copy.deepcopy(record.get_attribute(ref.attribute))
            except KeyError:
                raise FatalProviderError(
                    f"referenced attribute '{ref.attribute}' of {ref.address} is not in state"
                )

    def record(self, change: Change, identity: Optional[str], attributes: Dict[str, Any]) -> None:
        with self._guard:
            self.resources[change.address] = ResourceState(
                address=change.address,
                type=change.type,
                module=change.module,
                identity=identity,
                attributes=attributes,
                dependencies=list(change.dependencies),
            )

    def refresh_dependencies(self, change: Change) -> None:
        with self._guard:
            record = self.resources.get(change.address)
            if record is not None:
                record.dependencies = list(change.dependencies)

    def remove(self, address: str) -> None:
        with self._guard:
            self.resources.pop(address, None)


class ApplyExecutor:
    """
    Executes ChangeSets.

    Operations run in ChangeSet order. With parallelism > 1, a change starts
    once every same-phase change it waits for has succeeded, so operations
    linked by a dependency never overlap. The destroy phase finishes before
    creates and updates begin. Deferred destroys of removed resources run
    last, after the updates that stop kept resources referencing them.
    """

    def __init__(
        self,
        store: StateStore,
        provider: Provider,
        retry_policy: Optional[RetryPolicy] = None,
        parallelism: int = 1,
        sleep: Callable[[float], None] = time.sleep
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.store = store
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.parallelism = parallelism
        self.sleep = sleep

    def apply(
        self,
        change_set: ChangeSet,
        lock: Lock,
        cancel_event: Optional[threading.Event] = None
    ) -> ApplyResult:
        """
        Execute change_set while holding lock.

        The in-progress snapshot is flushed whether the run succeeds, aborts
        on a fatal provider error or is cancelled.

        Raises:
            LockError: If lock does not guard this environment
            ConflictError: If state moved on since the plan was made, or the
                final compare-and-swap write fails. The unwritten snapshot is
                then kept through StateStore.save_errored.
        """
        environment = change_set.environment
        if lock.environment != environment:
            raise LockError(f"Lock is for '{lock.environment}', not '{environment}'")
        self.store.verify_lock(lock)

        prior = self.store.read_or_empty(environment)
        if prior.serial != change_set.prior_serial:
            raise ConflictError(environment, change_set.prior_serial, prior.serial)

        run = _Run(self, change_set, prior, cancel_event or threading.Event())
        run.execute_phase(change_set.phase("destroy"))
        run.execute_phase(change_set.phase("apply"))
        run.execute_phase(change_set.phase("cleanup"))
        return run.flush()


class _Run:
    """State of a single apply run."""

    def __init__(self, executor: ApplyExecutor, change_set: ChangeSet, prior: StateSnapshot, cancel_event: threading.Event):
        self.executor = executor
        self.change_set = change_set
        self.prior = prior
        self.cancel_event = cancel_event
        self.aborted = threading.Event()
        self.buffer = _SnapshotBuffer(prior)
        self.succeeded: List[OperationRecord] = []
        self.failed: List[OperationFailure] = []
        self.skipped: List[OperationRecord] = []
        self.unchanged = 0
        self._guard = threading.Lock()

    @property
    def stopped(self) -> bool:
        return self.aborted.is_set() or self.cancel_event.is_set()

    def execute_phase(self, changes: List[Change]) -> None:
        if self.executor.parallelism == 1:
            for change in changes:
                if self.stopped:
                    self._skip(change)
                    continue
                self._execute(change)
            return
        self._execute_parallel(changes)

    def _execute_parallel(self, changes: List[Change]) -> None:
        pending = list(changes)
        completed = set()
        running = {}

        with ThreadPoolExecutor(max_workers=self.executor.parallelism, thread_name_prefix="converge-apply") as pool:
            while pending or running:
                if not self.stopped:
                    for change in list(pending):
                        if len(running) >= self.executor.parallelism:
                            break
                        if all(address in completed for address in change.waits_for):
                            pending.remove(change)
                            running[pool.submit(self._execute, change)] = change

                if not running:
                    break

                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in finished:
                    change = running.pop(future)
                    if future.result():
                        completed.add(change.address)

        for change in pending:
            self._skip(change)

    def _skip(self, change: Change) -> None:
        if change.action == ChangeAction.NO_OP:
            return
        with self._guard:
            self.skipped.append(OperationRecord(address=change.address, action=change.action))

    def _execute(self, change: Change) -> bool:
        """Run one change. Returns True on success."""
        if change.action == ChangeAction.NO_OP:
            self.buffer.refresh_dependencies(change)
            with self._guard:
                self.unchanged += 1
            return True

        action = ChangeAction(change.action)
        present, past = _VERBS[action]
        logger.info(f"{present} {change.address}")

        try:
            call_with_retry(
                lambda: self._call_provider(change, action),
                self.executor.retry_policy,
                description=f"{action.value.lower()} {change.address}",
                address=change.address,
                action=action.value,
                sleep=self.executor.sleep,
            )
        except ProviderError as e:
            self._fail(change, e)
            return False
        except Exception as e:
            logger.error(f"Unexpected provider error for {change.address}: {e}", exc_info=True)
            self._fail(change, FatalProviderError(str(e), address=change.address, operation=action.value))
            return False

        logger.info(f"{past} {change.address}")
        with self._guard:
            self.succeeded.append(OperationRecord(address=change.address, action=action.value))
        return True

    def _call_provider(self, change: Change, action: ChangeAction) -> None:
        provider = self.executor.provider
        if action == ChangeAction.DESTROY:
            provider.destroy(change.type, change.identity)
            self.buffer.remove(change.address)
            return

        attributes = evaluate(change.template, self.buffer.lookup)
        if action == ChangeAction.CREATE:
            identity, applied = provider.create(change.type, attributes)
        else:
            identity = change.identity
            applied = provider.update(change.type, identity, attributes)
        self.buffer.record(change, identity, {**attributes, **(applied or {})})

    def _fail(self, change: Change, error: ProviderError) -> None:
        if error.address is None:
            error.address = change.address
        if error.operation is None:
            error.operation = change.action
        logger.error(f"{error.describe()}; aborting remaining changes")
        with self._guard:
            self.failed.append(OperationFailure(address=change.address, action=change.action, error=str(error)))
        self.aborted.set()

    def _resolve_outputs(self) -> Dict[str, Dict[str, Any]]:
        outputs: Dict[str, Dict[str, Any]] = {}
        for module, expressions in self.change_set.outputs.items():
            for name, expression in expressions.items():
                try:
                    value = evaluate(expression, self.buffer.lookup)
                except FatalProviderError:
                    logger.debug(f"Output {module}.{name} is not resolvable yet")
                    continue
                outputs.setdefault(module, {})[name] = value
        return outputs

    def _status(self) -> ApplyStatus:
        if self.failed:
            return ApplyStatus.PARTIAL if self.succeeded else ApplyStatus.FAILED
        if self.cancel_event.is_set() and self.skipped:
            return ApplyStatus.CANCELLED
        return ApplyStatus.SUCCESS

    def flush(self) -> ApplyResult:
        """Write the buffer as the next snapshot and build the result."""
        environment = self.change_set.environment
        outputs = self._resolve_outputs()

        snapshot = StateSnapshot(
            serial=self.prior.serial + 1,
            lineage=self.prior.lineage if self.prior.serial else (self.change_set.lineage or uuid.uuid4().hex),
            resources=self.buffer.resources,
            outputs=outputs,
        )
        store = self.executor.store
        try:
            serial = store.write(environment, snapshot, expected_prior_serial=self.prior.serial).serial
        except StateError:
            store.save_errored(environment, snapshot)
            raise

        result = ApplyResult(
            environment=environment,
            status=self._status(),
            succeeded=self.succeeded,
            failed=self.failed,
            skipped=self.skipped,
            unchanged=self.unchanged,
            serial=serial,
            outputs=outputs,
        )
        logger.info(f"Apply for '{environment}' finished ({result.status}): {result.summary_line()}")
        return result
