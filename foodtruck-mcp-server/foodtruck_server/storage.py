"""Durable key-value storage and typed persistent values."""

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StorageEvent:
    """A change to one key made by another storage instance."""

    key: str
    old_value: Optional[str]
    new_value: Optional[str]


StorageListener = Callable[[StorageEvent], None]


class LocalStorage:
    """String key-value store persisted to a JSON file.

    Several instances (in this process or in other processes) may share the
    same file. Changes made by the others are discovered by ``poll()`` and
    delivered to subscribers as ``StorageEvent``s; an instance never notifies
    its own subscribers about its own writes.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        """
        Initialize storage.

        Args:
            path: Storage file (default: ~/.foodtruck_storage.json)
        """
        if path is None:
            path = str(Path.home() / ".foodtruck_storage.json")
        self.path = path
        self._listeners: list[StorageListener] = []
        self._raw: Optional[str] = None
        self._data: dict[str, str] = self._load(self._read_file())

    def _read_file(self) -> Optional[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read storage file {self.path}: {e}")
            return None

    def _load(self, raw: Optional[str]) -> dict[str, str]:
        """Parse the file contents into items."""
        self._raw = raw
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Could not load storage file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Storage file {self.path} does not hold an object, ignoring it")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save(self) -> None:
        """Write all items atomically."""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        raw = json.dumps(self._data, indent=2, sort_keys=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".foodtruck-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(raw)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self._raw = raw

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.poll(skip_key=key)
        self._data[key] = value
        self._save()

    def remove_item(self, key: str) -> None:
        self.poll(skip_key=key)
        if key not in self._data:
            return
        del self._data[key]
        self._save()

    def keys(self) -> list[str]:
        return list(self._data)

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        """
        Register a listener for changes made by other instances.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def poll(self, skip_key: Optional[str] = None) -> list[StorageEvent]:
        """
        Pick up changes written by other instances.

        Args:
            skip_key: Key about to be overwritten locally; its change is merged
                but not delivered

        Returns:
            The events delivered to subscribers
        """
        raw = self._read_file()
        if raw == self._raw:
            return []

        previous = self._data
        self._data = self._load(raw)

        events = []
        for key in sorted(set(previous) | set(self._data)):
            old_value = previous.get(key)
            new_value = self._data.get(key)
            if old_value != new_value and key != skip_key:
                events.append(StorageEvent(key, old_value, new_value))

        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception as e:
                    logger.error(f"Storage listener failed for {event.key}: {e}", exc_info=True)
        return events

    async def watch(self, interval: float = 1.0) -> None:
        """Poll for external changes until cancelled."""
        logger.info(f"Watching {self.path} for external changes every {interval}s")
        while True:
            await asyncio.sleep(interval)
            try:
                self.poll()
            except Exception as e:
                logger.error(f"Storage poll failed: {e}")


class PersistentValue(Generic[T]):
    """A typed value mirrored to one storage key.

    Reads never fail: a missing, corrupt or invalid stored value yields the
    initial value. Writes are skipped when the value did not change.
    """

    def __init__(
        self,
        storage: LocalStorage,
        key: str,
        initial: T,
        value_type: Any = None,
        on_change: Optional[Callable[[T], None]] = None,
        discard_invalid: bool = False,
    ) -> None:
        """
        Initialize the persistent value.

        Args:
            storage: Backing storage
            key: Storage key
            initial: Value used when nothing valid is stored
            value_type: Type to validate stored values against (pydantic)
            on_change: Called with the new value after it changes
            discard_invalid: Erase a stored value that cannot be read
        """
        self.storage = storage
        self.key = key
        self.initial = initial
        self.on_change = on_change
        self.discard_invalid = discard_invalid
        self._adapter: Optional[TypeAdapter] = TypeAdapter(value_type) if value_type is not None else None
        self._value: T = self._read()
        self._unsubscribe = storage.subscribe(self._on_storage_event)

    def _decode(self, raw: str) -> T:
        if self._adapter is not None:
            return self._adapter.validate_json(raw)
        return json.loads(raw)

    def _encode(self, value: T) -> str:
        if self._adapter is not None:
            data = self._adapter.dump_python(value, mode="json")
        else:
            data = value
        return json.dumps(data, sort_keys=True, default=str)

    def _read(self) -> T:
        raw = self.storage.get_item(self.key)
        if raw is None:
            return self.initial
        try:
            return self._decode(raw)
        except (ValueError, ValidationError) as e:
            logger.error(f"Could not read {self.key} from storage: {e}")
            if self.discard_invalid:
                self.storage.remove_item(self.key)
            return self.initial

    def get(self) -> T:
        return self._value

    def refresh(self) -> None:
        """Adopt changes other instances made to the storage file."""
        self.storage.poll()

    def set(self, value: T) -> None:
        """Store a new value unless it equals the stored one."""
        try:
            self.refresh()
            encoded = self._encode(value)
            if encoded == self._encode(self._value):
                return
            self._value = value
            self.storage.set_item(self.key, encoded)
        except Exception as e:
            logger.error(f"Could not save {self.key} to storage: {e}")
            return
        self._notify()

    def remove(self) -> None:
        """Erase the stored value and fall back to the initial value."""
        self.refresh()
        changed = self._encode(self._value) != self._encode(self.initial)
        self._value = self.initial
        try:
            self.storage.remove_item(self.key)
        except OSError as e:
            logger.error(f"Could not remove {self.key} from storage: {e}")
        if changed:
            self._notify()

    def close(self) -> None:
        self._unsubscribe()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self._value)

    def _on_storage_event(self, event: StorageEvent) -> None:
        if event.key != self.key:
            return

        if event.new_value is None:
            new_value = self.initial
        else:
            try:
                new_value = self._decode(event.new_value)
            except (ValueError, ValidationError) as e:
                logger.error(f"Ignoring unreadable external change to {self.key}: {e}")
                return

        if self._encode(new_value) != self._encode(self._value):
            logger.info(f"Adopted external change to {self.key}")
            self._value = new_value
            self._notify()
