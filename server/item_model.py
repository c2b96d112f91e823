"""Item and inventory model.

Concepts:
- Item: one stack of a kind of object. `name` is its identity inside a holder's
  inventory; `quantity` counts the units in the stack.
- Inventory: name -> Item for a single holder (a room or a user).

The runtime form always carries every field with a concrete value. Only the
persisted record is compact: `serialize()` drops fields that still hold their
default so stored JSON stays small, and `from_dict()` fills them back in.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from errors import ItemLockedError, ValidationError


@dataclass
class Item:
    """One stack of items.

    Schema:
    - name: unique per holder
    - description: display text
    - quantity: units in this stack (>= 0)
    - hidden: invisible to viewers without admin privilege
    - locked: may not be taken, dropped, given or consumed
    - editable: players may edit the description (admin tooling flag)
    - children: nested items for containers/composites
    """

    name: str
    description: str = ""
    quantity: int = 1
    hidden: bool = False
    locked: bool = False
    editable: bool = False
    children: List["Item"] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("Item name cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValidationError(f"{self.quantity!r} is not a whole number")
        if self.quantity < 0:
            raise ValidationError(f"Quantity of {self.name} cannot be negative")

    def serialize(self) -> dict:
        record: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
        }
        if self.quantity != 1:
            record["quantity"] = self.quantity
        if self.hidden:
            record["hidden"] = True
        if self.locked:
            record["locked"] = True
        if self.editable:
            record["editable"] = True
        if self.children:
            record["children"] = [c.serialize() for c in self.children]
        return record

    @staticmethod
    def from_dict(data: dict, *, name: Optional[str] = None) -> "Item":
        """Build an Item from a persisted or admin-supplied record.

        `name` lets an inventory keyed by item name supply it when the record
        itself omits the field.
        """
        if isinstance(data, Item):
            return data.copy()
        if not isinstance(data, dict):
            raise ValidationError(f"Cannot build an item from {data!r}")
        raw_qty = data.get("quantity", 1)
        try:
            quantity = int(raw_qty)
        except (TypeError, ValueError):
            raise ValidationError(f"{raw_qty!r} is not a number") from None
        return Item(
            name=str(data.get("name") or name or ""),
            description=str(data.get("description") or ""),
            quantity=quantity,
            hidden=bool(data.get("hidden", False)),
            locked=bool(data.get("locked", False)),
            editable=bool(data.get("editable", False)),
            children=[Item.from_dict(c) for c in (data.get("children") or [])],
        )

    def copy(self, **changes: Any) -> "Item":
        clone = copy.deepcopy(self)
        for key, value in changes.items():
            setattr(clone, key, value)
        clone.__post_init__()
        return clone


def is_missing_for(item: Optional[Item], privileged: bool) -> bool:
    """An item is missing to a viewer when it is absent, or hidden from a non-admin."""
    if item is None:
        return True
    return item.hidden and not privileged


def ensure_removable(item: Item) -> None:
    if item.locked:
        raise ItemLockedError(item.name)


class Inventory:
    """Insertion-ordered mapping of item name -> Item owned by one holder."""

    def __init__(self, items: Optional[Iterable[Item]] = None) -> None:
        self._items: Dict[str, Item] = {}
        for item in items or []:
            self.add(item)

    def get(self, name: str) -> Optional[Item]:
        return self._items.get(name)

    def add(self, item: Item) -> Item:
        """Insert or replace the stack stored under item.name."""
        self._items[item.name] = item
        return item

    def remove(self, name: str) -> Optional[Item]:
        return self._items.pop(name, None)

    def names(self) -> List[str]:
        return list(self._items.keys())

    def values(self) -> List[Item]:
        return list(self._items.values())

    def visible_items(self, privileged: bool) -> List[Item]:
        return [i for i in self._items.values() if not is_missing_for(i, privileged)]

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def __iter__(self) -> Iterator[Item]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Inventory):
            return NotImplemented
        return self.serialize() == other.serialize()

    def __repr__(self) -> str:
        inner = ", ".join(f"{i.name}:{i.quantity}" for i in self._items.values())
        return f"Inventory({inner})"

    def serialize(self) -> Dict[str, dict]:
        return {name: item.serialize() for name, item in self._items.items()}

    @staticmethod
    def from_record(record: Any) -> "Inventory":
        """Accept {name: attrs}, a list of attrs, or None (empty)."""
        inv = Inventory()
        if record is None:
            return inv
        if isinstance(record, dict):
            for key, attrs in record.items():
                inv.add(Item.from_dict(attrs, name=key))
        elif isinstance(record, list):
            for attrs in record:
                inv.add(Item.from_dict(attrs))
        else:
            raise ValidationError(f"Unrecognized inventory record: {type(record).__name__}")
        return inv

    def copy(self) -> "Inventory":
        return Inventory(item.copy() for item in self._items.values())

    def replace_with(self, other: "Inventory") -> None:
        """Make this inventory hold exactly what `other` holds (deep copies)."""
        self._items = {item.name: item.copy() for item in other}
