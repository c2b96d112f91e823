"""Domain errors raised by the inventory core.

Taxonomy:
    ValidationError  - bad input, rejected before any lock is taken
    StateError       - the freshly loaded world disagrees with the request
                       (detected under the lock; the lock is still released)
    PersistenceError - the store failed mid-transaction; the transaction was
                       rolled back and any room mirror change was undone
    LockManagerError - the lock serializer itself failed; fatal for the action

Services translate the first three into user-visible text. LockManagerError is
never translated: it propagates to the top-level handler.
"""

from __future__ import annotations


class InventoryError(Exception):
    """Base class for every error the inventory core raises on purpose."""


class ValidationError(InventoryError, ValueError):
    pass


class StateError(InventoryError):
    pass


class ItemMissingError(StateError):
    def __init__(self, item_name: str, holder_label: str | None = None) -> None:
        self.item_name = item_name
        self.holder_label = holder_label
        if holder_label:
            super().__init__(f"{item_name} does not exist in {holder_label}")
        else:
            super().__init__(f"You do not have {item_name}")


class ItemLockedError(StateError):
    def __init__(self, item_name: str) -> None:
        self.item_name = item_name
        super().__init__(f"{item_name} cannot be removed")


class InsufficientQuantityError(StateError):
    def __init__(self, item_name: str, requested: int, available: int) -> None:
        self.item_name = item_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot move {requested} of {item_name}: only {available} available"
        )


class UnknownHolderError(StateError):
    def __init__(self, kind: str, holder_id: str) -> None:
        self.kind = kind
        self.holder_id = holder_id
        super().__init__(f"Could not find {kind} {holder_id}")


class ItemExistsError(StateError):
    def __init__(self, item_name: str) -> None:
        self.item_name = item_name
        super().__init__(f"{item_name} already exists")


class PersistenceError(InventoryError):
    """The store rejected a write; nothing was changed."""


class LockManagerError(RuntimeError):
    """The lock serializer failed. Not an InventoryError: callers must not swallow it."""
