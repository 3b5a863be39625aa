"""Custom exceptions for learning graph operations.

Every failure leaves the targeted session untouched; callers may retry.
"""

from typing import Optional


class EngineError(Exception):
    """Base exception for learning graph operations."""
    pass


class StructuralViolation(EngineError):
    """Raised when a graph would break acyclicity, closure or id uniqueness."""
    def __init__(self, invariant: str, detail: str):
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"{invariant} violated: {detail}")


class UnitNotFoundError(EngineError):
    """Raised when a unit id is absent from the targeted graph."""
    def __init__(self, unit_id: str, scope: str = "root"):
        self.unit_id = unit_id
        self.scope = scope
        super().__init__(f"Unit '{unit_id}' not found in {scope} graph")


class SessionNotFoundError(EngineError):
    """Raised when a session is not found."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Unknown session: {session_id}")


class InvalidTransitionError(EngineError):
    """Raised when an event is not allowed from the unit's current state."""
    def __init__(self, unit_id: Optional[str], reason: str):
        self.unit_id = unit_id
        self.reason = reason
        target = f"'{unit_id}'" if unit_id else "session"
        super().__init__(f"Cannot transition {target}: {reason}")


class ExternalFailure(EngineError):
    """Raised when a generation collaborator fails or returns nothing usable."""
    def __init__(self, operation: str, target_id: Optional[str], cause: Optional[BaseException] = None):
        self.operation = operation
        self.target_id = target_id
        self.cause = cause
        msg = f"{operation} failed"
        if target_id:
            msg += f" for '{target_id}'"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class StaleResponseError(EngineError):
    """Raised when a generator response targets a state that has since changed."""
    def __init__(self, session_id: str, target_id: Optional[str]):
        self.session_id = session_id
        self.target_id = target_id
        super().__init__(
            f"Discarded stale response for '{target_id}' in session {session_id}"
        )
