"""State stores: durable, lockable snapshots with compare-and-swap writes."""

import json
import os
import shutil
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union
from pydantic import ValidationError
from ..utils.errors import (
    ConflictError,
    LockError,
    LockHeldError,
    OperationCancelledError,
    StateCorruptionError,
    StateError,
    StateNotFoundError,
)
from ..utils.logging import get_logger
from .models import Lock, StateSnapshot

logger = get_logger("state.store")

DEFAULT_LOCK_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 1.0


class StateStore(ABC):
    """
    Contract for snapshot storage.

    Implementations provide raw access to the per-environment snapshot and
    lock records; blocking lock acquisition, checksum handling and the
    serial compare-and-swap live here.
    """

    def __init__(
        self,
        default_lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL
    ):
        self.default_lock_timeout = default_lock_timeout
        self.poll_interval = poll_interval
        self._write_guard = threading.Lock()

    @abstractmethod
    def _load(self, environment: str) -> Optional[str]:
        """Return the serialized snapshot, or None if absent."""
        pass

    @abstractmethod
    def _store(self, environment: str, payload: str) -> None:
        """Atomically replace the serialized snapshot."""
        pass

    @abstractmethod
    def _create_lock(self, environment: str, lock: Lock) -> bool:
        """Create the lock record if absent. Returns False if one exists."""
        pass

    @abstractmethod
    def _load_lock(self, environment: str) -> Optional[Lock]:
        pass

    @abstractmethod
    def _delete_lock(self, environment: str) -> None:
        pass

    @abstractmethod
    def list_environments(self) -> List[str]:
        pass

    def _exclusive_write(self, environment: str):
        """Context held around the serial check and replace; backends shared between processes override it."""
        return nullcontext()

    def _store_errored(self, environment: str, payload: str) -> Optional[str]:
        """Keep a snapshot that could not be written. Returns where it went, or None."""
        return None

    def read(self, environment: str) -> StateSnapshot:
        """
        Read the current snapshot.

        Raises:
            StateNotFoundError: If the environment has no state yet
            StateCorruptionError: If the snapshot is unreadable or fails its checksum
        """
        payload = self._load(environment)
        if payload is None:
            raise StateNotFoundError(environment)

        try:
            snapshot = StateSnapshot(**json.loads(payload))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            raise StateCorruptionError(f"State for '{environment}' cannot be decoded: {e}")

        if not snapshot.verify():
            raise StateCorruptionError(
                f"State for '{environment}' failed checksum verification (serial {snapshot.serial})"
            )
        logger.debug(f"Read state for '{environment}' (serial {snapshot.serial})")
        return snapshot

    def read_or_empty(self, environment: str) -> StateSnapshot:
        """Read the current snapshot, or an empty serial-0 snapshot if none exists."""
        try:
            return self.read(environment)
        except StateNotFoundError:
            return StateSnapshot()

    def write(self, environment: str, snapshot: StateSnapshot, expected_prior_serial: int) -> StateSnapshot:
        """
        Compare-and-swap write.

        Args:
            environment: Environment name
            snapshot: New snapshot; its serial must exceed the stored one
            expected_prior_serial: Serial the caller planned against (0 if none)

        Returns:
            The sealed snapshot as stored

        Raises:
            ConflictError: If the stored serial differs from expected_prior_serial
            StateError: If the new serial does not increase
        """
        with self._write_guard, self._exclusive_write(environment):
            try:
                current_serial = self.read(environment).serial
            except StateNotFoundError:
                current_serial = 0

            if current_serial != expected_prior_serial:
                raise ConflictError(environment, expected_prior_serial, current_serial)
            if snapshot.serial <= current_serial:
                raise StateError(
                    f"New snapshot serial {snapshot.serial} for '{environment}' "
                    f"must be greater than {current_serial}"
                )

            sealed = snapshot.seal()
            self._store(environment, sealed.model_dump_json(indent=2))

        logger.info(f"Wrote state for '{environment}' (serial {current_serial} -> {sealed.serial})")
        return sealed

    def save_errored(self, environment: str, snapshot: StateSnapshot) -> Optional[str]:
        """
        Preserve a snapshot whose write failed, so applied identities are not lost.

        Backends without a side location log the full snapshot instead.

        Returns:
            Where the snapshot was saved, or None if it was only logged
        """
        payload = snapshot.seal().model_dump_json(indent=2)
        location = self._store_errored(environment, payload)
        if location is None:
            logger.error(f"Unwritten state for '{environment}':\n{payload}")
        else:
            logger.error(f"Unwritten state for '{environment}' saved to {location}")
        return location

    def current_lock(self, environment: str) -> Optional[Lock]:
        """Lock currently held on the environment, if any."""
        return self._load_lock(environment)

    def acquire_lock(
        self,
        environment: str,
        holder: str,
        timeout: Optional[float] = None,
        operation: str = "apply",
        cancel_event: Optional[threading.Event] = None
    ) -> Lock:
        """
        Acquire the environment lock, blocking up to timeout seconds.

        Raises:
            LockHeldError: If the lock is still held when the timeout expires
            OperationCancelledError: If cancel_event is set while waiting
        """
        if timeout is None:
            timeout = self.default_lock_timeout
        deadline = time.monotonic() + timeout
        lock = Lock(environment=environment, holder=holder, operation=operation)

        while True:
            if self._create_lock(environment, lock):
                logger.info(f"Acquired state lock for '{environment}' as '{holder}' (lock id {lock.lock_id})")
                return lock

            current = self._load_lock(environment)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                current_holder = current.holder if current else "unknown"
                raise LockHeldError(environment, current_holder, current.lock_id if current else None)

            logger.debug(
                f"State lock for '{environment}' held by "
                f"'{current.holder if current else 'unknown'}', retrying"
            )
            delay = min(self.poll_interval, remaining)
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise OperationCancelledError(f"Lock acquisition for '{environment}' cancelled")
            else:
                time.sleep(delay)

    def release_lock(self, environment: str, lock: Lock) -> None:
        """
        Release a lock held by the caller.

        Raises:
            LockError: If the environment is locked by a different lock id
        """
        current = self._load_lock(environment)
        if current is None:
            logger.warning(f"State lock for '{environment}' was already released")
            return
        if current.lock_id != lock.lock_id:
            raise LockError(
                f"Cannot release lock {lock.lock_id} for '{environment}': "
                f"held by '{current.holder}' (lock id {current.lock_id})"
            )
        self._delete_lock(environment)
        logger.info(f"Released state lock for '{environment}'")

    def force_unlock(self, environment: str, lock_id: str) -> Lock:
        """
        Remove a stuck lock after checking its id.

        Raises:
            LockError: If no lock is held or the id does not match
        """
        current = self._load_lock(environment)
        if current is None:
            raise LockError(f"No lock is held for '{environment}'")
        if current.lock_id != lock_id:
            raise LockError(
                f"Lock id mismatch for '{environment}': held lock is {current.lock_id}"
            )
        self._delete_lock(environment)
        logger.warning(f"Force-unlocked '{environment}' (was held by '{current.holder}')")
        return current

    def verify_lock(self, lock: Lock) -> None:
        """
        Check that lock is the one currently held.

        Raises:
            LockError: If the environment is not locked by this lock
        """
        current = self._load_lock(lock.environment)
        if current is None or current.lock_id != lock.lock_id:
            raise LockError(f"Lock {lock.lock_id} is not held for '{lock.environment}'")

    @contextmanager
    def locked(
        self,
        environment: str,
        holder: str,
        timeout: Optional[float] = None,
        operation: str = "apply",
        cancel_event: Optional[threading.Event] = None
    ) -> Iterator[Lock]:
        """
        Hold the environment lock for the duration of the block.

        A failed release is logged rather than raised, so it never masks the
        block's own result or exception.
        """
        lock = self.acquire_lock(environment, holder, timeout, operation, cancel_event)
        try:
            yield lock
        finally:
            try:
                self.release_lock(environment, lock)
            except LockError as e:
                logger.error(f"Could not release state lock for '{environment}': {e}")


class MemoryStateStore(StateStore):
    """In-process store. Snapshots are kept serialized so callers never share objects."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._snapshots: Dict[str, str] = {}
        self._locks: Dict[str, Lock] = {}
        self._guard = threading.Lock()

    def _load(self, environment: str) -> Optional[str]:
        with self._guard:
            return self._snapshots.get(environment)

    def _store(self, environment: str, payload: str) -> None:
        with self._guard:
            self._snapshots[environment] = payload

    def _create_lock(self, environment: str, lock: Lock) -> bool:
        with self._guard:
            if environment in self._locks:
                return False
            self._locks[environment] = lock
            return True

    def _load_lock(self, environment: str) -> Optional[Lock]:
        with self._guard:
            return self._locks.get(environment)

    def _delete_lock(self, environment: str) -> None:
        with self._guard:
            self._locks.pop(environment, None)

    def list_environments(self) -> List[str]:
        with self._guard:
            return sorted(self._snapshots)


class LocalStateStore(StateStore):
    """
    Filesystem store laid out like an object-store bucket.

    <root>/<environment>/state.json         current snapshot
    <root>/<environment>/state.json.backup  previous snapshot
    <root>/<environment>/state.lock         lock record, created exclusively
    <root>/<environment>/state.json.cas     held while a write checks and replaces the snapshot
    <root>/<environment>/state.json.errored last snapshot that could not be written
    """

    STATE_KEY = "state.json"
    BACKUP_KEY = "state.json.backup"
    LOCK_KEY = "state.lock"
    CAS_KEY = "state.json.cas"
    ERRORED_KEY = "state.json.errored"

    # A write holds the guard for milliseconds; anything this old was left by a crashed writer.
    cas_stale_seconds = 60.0
    cas_wait_seconds = 10.0
    cas_poll_interval = 0.01

    def __init__(self, root: Union[str, Path], **kwargs):
        super().__init__(**kwargs)
        self.root = Path(root)

    def _dir(self, environment: str) -> Path:
        return self.root / environment

    def state_path(self, environment: str) -> Path:
        return self._dir(environment) / self.STATE_KEY

    def lock_path(self, environment: str) -> Path:
        return self._dir(environment) / self.LOCK_KEY

    def _load(self, environment: str) -> Optional[str]:
        path = self.state_path(environment)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateError(f"Error reading state file {path}: {e}")

    def _store(self, environment: str, payload: str) -> None:
        directory = self._dir(environment)
        directory.mkdir(parents=True, exist_ok=True)
        path = self.state_path(environment)

        try:
            if path.exists():
                shutil.copy2(path, directory / self.BACKUP_KEY)
            fd, tmp_name = tempfile.mkstemp(prefix=".state-", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            raise StateError(f"Failed to write state file {path}: {e}")

    @contextmanager
    def _exclusive_write(self, environment: str) -> Iterator[None]:
        directory = self._dir(environment)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.CAS_KEY
        deadline = time.monotonic() + self.cas_wait_seconds

        while True:
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                break
            except FileExistsError:
                if self._clear_stale_guard(path):
                    continue
                if time.monotonic() >= deadline:
                    raise StateError(
                        f"Timed out waiting for a concurrent state write on '{environment}'. "
                        f"Remove {path} if no converge process is running."
                    )
                time.sleep(self.cas_poll_interval)

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))
        try:
            yield
        finally:
            try:
                path.unlink()
            except FileNotFoundError:
                pass

    def _clear_stale_guard(self, path: Path) -> bool:
        """Remove a write guard left by a crashed writer. Returns True if the guard is gone."""
        try:
            age = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return True
        if age < self.cas_stale_seconds:
            return False
        logger.warning(f"Removing stale state write guard {path} ({age:.0f}s old)")
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        return True

    def _store_errored(self, environment: str, payload: str) -> Optional[str]:
        path = self._dir(environment) / self.ERRORED_KEY
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not save unwritten state to {path}: {e}")
            return None
        return str(path)

    def _create_lock(self, environment: str, lock: Lock) -> bool:
        path = self.lock_path(environment)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(lock.model_dump_json())
        return True

    def _load_lock(self, environment: str) -> Optional[Lock]:
        path = self.lock_path(environment)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Lock(**data)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            # A lock file is being written or was left truncated.
            logger.warning(f"Unreadable lock file {path}: {e}")
            return Lock(environment=environment, holder="unknown", lock_id="unknown")

    def _delete_lock(self, environment: str) -> None:
        try:
            self.lock_path(environment).unlink()
        except FileNotFoundError:
            pass

    def list_environments(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(
            entry.name for entry in self.root.iterdir()
            if (entry / self.STATE_KEY).exists()
        )


def open_state_store(settings) -> StateStore:
    """
    Create the store configured in EngineSettings.

    Raises:
        StateError: If the backend is not supported
    """
    backend = settings.state.backend
    options = {
        "default_lock_timeout": settings.lock.timeout_seconds,
        "poll_interval": settings.lock.poll_interval_seconds,
    }
    if backend == "local":
        return LocalStateStore(settings.state.path, **options)
    if backend == "memory":
        return MemoryStateStore(**options)
    raise StateError(f"Unsupported state backend: {backend}. Supported: local, memory")
