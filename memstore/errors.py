"""Error taxonomy for the write-behind store."""
from __future__ import annotations


class DimensionMismatch(ValueError):
    """Query and candidate vectors have different lengths."""
    def __init__(self, expected: int, got: int, item_id: object = None):
        self.expected = expected
        self.got = got
        self.item_id = item_id
        where = f" (candidate {item_id!r})" if item_id is not None else ""
        super().__init__(f"Vectors must have the same dimension: expected {expected}, got {got}{where}")


class SessionNotFound(LookupError):
    """Session was never registered or has already been closed."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Unknown session '{session_id}'")


class PersistenceFailure(RuntimeError):
    """The persistence collaborator rejected a write or delete.

    Only ever raised and caught inside the flush scheduler; producers never see it.
    """
    def __init__(self, op: str, item_id: object, reason: str = "returned failure"):
        self.op = op
        self.item_id = item_id
        super().__init__(f"{op}({item_id!r}) {reason}")
