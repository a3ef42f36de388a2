"""Storage error taxonomy.

Every error carries a machine-readable ``code`` and the HTTP status the API
boundary renders it with. They subclass ``ValueError`` because they are
business-rule violations, the same family the service layer already raises.
"""

import uuid
from dataclasses import dataclass, field

from fastapi import status


class StorageError(ValueError):
    code = "STORAGE_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: list | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidDimensions(StorageError):
    code = "INVALID_DIMENSIONS"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidPositionCode(StorageError):
    code = "INVALID_POSITION_CODE"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class DuplicateShelfLetter(StorageError):
    code = "DUPLICATE_SHELF_LETTER"
    status_code = status.HTTP_409_CONFLICT


class CapacityExceeded(StorageError):
    code = "CAPACITY_EXCEEDED"
    status_code = status.HTTP_409_CONFLICT


class NegativeOccupancy(StorageError):
    code = "NEGATIVE_OCCUPANCY"
    status_code = status.HTTP_409_CONFLICT


class ZeroCapacity(StorageError):
    code = "ZERO_CAPACITY"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class StorageInUse(StorageError):
    """Structural change refused because samples are still stored."""

    code = "STORAGE_IN_USE"
    status_code = status.HTTP_409_CONFLICT


class Conflict(StorageError):
    """Stale version: someone else changed the record since it was read."""

    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class Forbidden(StorageError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(StorageError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


@dataclass
class BatchItemResult:
    id: uuid.UUID
    ok: bool
    code: str | None = None
    message: str | None = None
    label: str | None = None


@dataclass
class BatchResult:
    """Per-id outcome of a bulk or batch operation."""

    items: list[BatchItemResult] = field(default_factory=list)

    def record_success(self, item_id: uuid.UUID, label: str | None = None) -> None:
        self.items.append(BatchItemResult(id=item_id, ok=True, label=label))

    def record_failure(self, item_id: uuid.UUID, exc: StorageError) -> None:
        self.items.append(BatchItemResult(
            id=item_id, ok=False, code=exc.code, message=exc.message,
        ))

    @property
    def succeeded(self) -> list[uuid.UUID]:
        return [i.id for i in self.items if i.ok]

    @property
    def failed(self) -> list[BatchItemResult]:
        return [i for i in self.items if not i.ok]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def summary(self) -> str:
        return f"{len(self.succeeded)} of {len(self.items)} succeeded"

    def as_dict(self) -> dict:
        return {
            "summary": self.summary,
            "succeeded": [str(i) for i in self.succeeded],
            "failed": [
                {"id": str(i.id), "code": i.code, "message": i.message}
                for i in self.failed
            ],
        }


class PartialBulkFailure(StorageError):
    """Raised by atomic batches; the whole batch is rolled back."""

    code = "PARTIAL_BULK_FAILURE"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, result: BatchResult) -> None:
        super().__init__(
            f"{result.summary}; the batch was rolled back.",
            details=result.as_dict()["failed"],
        )
        self.result = result
