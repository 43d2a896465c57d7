"""Result accumulator for batch jobs: per-item errors never abort the batch"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class JobError:
    """Failure of one batch item (a teacher, a subscription, ...)"""
    item_type: str
    item_id: str
    operation: str
    message: str

    def __str__(self) -> str:
        return f"{self.operation} failed for {self.item_type} {self.item_id}: {self.message}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "item_type": self.item_type,
            "item_id": self.item_id,
            "operation": self.operation,
            "message": self.message,
        }


@dataclass
class JobResult:
    job_name: str
    counts: Dict[str, int] = field(default_factory=dict)
    errors: List[JobError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def increment(self, counter: str, amount: int = 1) -> None:
        self.counts[counter] = self.counts.get(counter, 0) + amount

    def add_error(self, item_type: str, item_id: Any, operation: str, error: Any) -> JobError:
        entry = JobError(item_type=item_type, item_id=str(item_id), operation=operation, message=str(error))
        self.errors.append(entry)
        return entry

    def count(self, counter: str) -> int:
        return self.counts.get(counter, 0)

    def to_dict(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Flat {success, <counts>, errors[]} shape shared by scheduler and admin triggers."""
        data: Dict[str, Any] = {"success": self.success, "job_name": self.job_name}
        data.update(self.counts)
        if extra:
            data.update(extra)
        data["errors"] = [e.to_dict() for e in self.errors]
        return data
