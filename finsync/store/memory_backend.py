"""In-memory local store backend, for tests and ephemeral sessions."""

from typing import Optional

from finsync.store.interface import LocalStoreBackend


class InMemoryBackend(LocalStoreBackend):
    """Keeps every document in dicts; nothing survives the process."""

    def __init__(self):
        self._records: dict[str, dict[str, str]] = {}
        self._operations: dict[str, tuple[int, str]] = {}
        self._metadata: Optional[str] = None

    def load_records(self, entity_type: str) -> list[str]:
        return list(self._records.get(entity_type, {}).values())

    def save_record(self, entity_type: str, record_id: str, owner_id: str, data: str) -> None:
        self._records.setdefault(entity_type, {})[record_id] = data

    def delete_record(self, entity_type: str, record_id: str) -> None:
        self._records.get(entity_type, {}).pop(record_id, None)

    def clear_records(self) -> None:
        self._records.clear()

    def load_operations(self) -> list[str]:
        return [data for _, data in sorted(self._operations.values(), key=lambda item: item[0])]

    def save_operation(self, operation_id: str, sequence: int, data: str) -> None:
        self._operations[operation_id] = (sequence, data)

    def delete_operation(self, operation_id: str) -> None:
        self._operations.pop(operation_id, None)

    def clear_operations(self) -> None:
        self._operations.clear()

    def load_metadata(self) -> Optional[str]:
        return self._metadata

    def save_metadata(self, data: str) -> None:
        self._metadata = data

    def clear_metadata(self) -> None:
        self._metadata = None
