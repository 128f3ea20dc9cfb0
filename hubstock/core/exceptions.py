"""Error taxonomy for the distribution core.

NotFoundError and InconsistentStateError are surfaced to callers as-is.
A zero fee total is not an error and never raises.
"""
from typing import Any, Dict, Optional


class HubstockError(Exception):
    """Base exception for distribution core errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(HubstockError):
    """A referenced unit, product, enterprise or order cycle does not exist."""
    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(
            f"{entity} {identifier} not found",
            details={"entity": entity, "id": str(identifier)},
        )


class InconsistentStateError(HubstockError):
    """Persisted data violates an invariant (orphan unit, negative on_hand, ...)."""
    pass


class ValidationError(HubstockError):
    """A write was rejected before anything was persisted."""
    pass
