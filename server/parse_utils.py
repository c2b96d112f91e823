"""parse_utils.py: shared command text parsing.

Commands read like `take 2 of apple in hall` or `give torch to bob`: a verb,
a free-text head, then optional keyword clauses. Quotes group words, so an item
called "jar in a box" can be written `take "jar in a box"`.

All failures raise ValidationError, which callers report before taking any lock.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from constants import COMMAND_PREFIX, CONFIRM_NO, CONFIRM_YES
from errors import ValidationError

# Marker returned by parse_quantity for "all"
ALL = None


@dataclass
class ParsedCommand:
    verb: str
    head: str = ""
    clauses: Dict[str, str] = field(default_factory=dict)

    def clause(self, name: str) -> Optional[str]:
        return self.clauses.get(name)


_TOKEN_RE = re.compile(r'"([^"]*)"|(\S+)')
_QUANTITY_WORD = re.compile(r"^(?:[+-]?\d+|all)$", re.IGNORECASE)


def _tokens(text: str) -> List[str]:
    return [quoted if quoted else bare for quoted, bare in _TOKEN_RE.findall(text)]


def parse_command(text: str, keywords: Iterable[str] = ()) -> ParsedCommand:
    """Split `text` into a verb, a head and keyword clauses.

    Each keyword starts a clause that runs until the next keyword. Keywords are
    matched as whole words, case-insensitively; the first occurrence wins.

    Example:
        parse_command('/take 2 of apple in Great Hall', ['in'])
        -> ParsedCommand(verb='take', head='2 of apple', clauses={'in': 'Great Hall'})
    """
    raw = (text or "").strip()
    if raw.startswith(COMMAND_PREFIX):
        raw = raw[len(COMMAND_PREFIX):]
    tokens = _tokens(raw)
    if not tokens:
        return ParsedCommand(verb="")
    words = {k.lower() for k in keywords}
    verb = tokens[0].lower()
    head: List[str] = []
    clauses: Dict[str, List[str]] = {}
    current = head
    for tok in tokens[1:]:
        low = tok.lower()
        if low in words and low not in clauses:
            current = clauses.setdefault(low, [])
            continue
        current.append(tok)
    return ParsedCommand(
        verb=verb,
        head=" ".join(head),
        clauses={k: " ".join(v) for k, v in clauses.items()},
    )


def parse_quantity(text: str) -> Optional[int]:
    """Parse a positive whole number, or 'all' (returned as ALL, i.e. None)."""
    t = (text or "").strip().lower()
    if t == "all":
        return ALL
    try:
        value = int(t)
    except ValueError:
        raise ValidationError(f"{text!r} is not a number") from None
    if value <= 0:
        raise ValidationError("Quantity must be at least 1")
    return value


def split_quantity(head: str) -> Tuple[Optional[int], str]:
    """`2 of apple` -> (2, 'apple'); `all of apple` -> (ALL, 'apple'); `apple` -> (1, 'apple').

    `of` only separates a quantity when the word before it is one, so
    `bag of holding` stays a single item name.
    """
    head = (head or "").strip()
    parts = head.split(None, 2)
    if len(parts) == 3 and parts[1].lower() == "of" and _QUANTITY_WORD.match(parts[0]):
        return parse_quantity(parts[0]), parts[2].strip()
    if not head:
        raise ValidationError("Which item?")
    return 1, head


def parse_comma_list(s: Optional[str]) -> List[str]:
    """Return a list of comma-separated items with whitespace trimmed and empties removed."""
    if not s:
        return []
    parts = [p.strip() for p in str(s).split(',')]
    return [p for p in parts if p]


def parse_pipe_fields(s: Optional[str]) -> List[str]:
    """`hall | apple | A red apple` -> ['hall', 'apple', 'A red apple']"""
    return [p.strip() for p in (s or "").split('|')]


def parse_bool(text: str) -> bool:
    t = (text or "").strip().lower()
    if t in CONFIRM_YES:
        return True
    if t in CONFIRM_NO:
        return False
    raise ValidationError(f"Expected yes or no, got {text!r}")
