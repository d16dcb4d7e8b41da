"""
Key patterns shared by both cache tiers.

A pattern is a key template where ``*`` matches any run of characters and
every other character is literal. The same pattern drives enumeration in the
local tier (regex match over its keys) and in Redis (glob match via SCAN), so
both tiers agree on what a pattern covers.
"""

import json
import re
from typing import Any, Iterable, List

from shared.errors import ValidationError

WILDCARD = "*"
KEY_PLACEHOLDER = "{key}"

# Characters with glob meaning in Redis MATCH that must be taken literally.
_REDIS_GLOB_SPECIALS = re.compile(r"([?\[\]\\])")


class KeyPattern:
    """A family of cache keys, e.g. ``"college:slug:*"``."""

    __slots__ = ("template", "_regex")

    def __init__(self, template: str):
        if not template:
            raise ValueError("Key pattern must not be empty")
        self.template = template
        parts = [re.escape(part) for part in template.split(WILDCARD)]
        self._regex = re.compile("^" + ".*".join(parts) + "$", re.DOTALL)

    @classmethod
    def prefix(cls, pattern: str) -> "KeyPattern":
        """Build a pattern where a bare string means "everything under this prefix"."""
        if WILDCARD in pattern:
            return cls(pattern)
        return cls(pattern + WILDCARD)

    @property
    def is_exact(self) -> bool:
        """True when the pattern names a single key."""
        return WILDCARD not in self.template

    @property
    def redis_glob(self) -> str:
        """The pattern as a Redis MATCH expression."""
        return WILDCARD.join(
            _REDIS_GLOB_SPECIALS.sub(r"\\\1", part) for part in self.template.split(WILDCARD)
        )

    def matches(self, key: str) -> bool:
        return self._regex.match(key) is not None

    def scan(self, keys: Iterable[str]) -> List[str]:
        """Keys from ``keys`` covered by this pattern."""
        return [key for key in keys if self.matches(key)]

    def bind(self, entity_key: Any = None) -> "KeyPattern":
        """Substitute ``{key}``; without an entity key the slot widens to ``*``.

        A key containing ``*`` is rejected so a keyed invalidation never widens.
        """
        if KEY_PLACEHOLDER not in self.template:
            return self
        value = WILDCARD if entity_key is None else check_entity_key(entity_key)
        return KeyPattern(self.template.replace(KEY_PLACEHOLDER, value))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, KeyPattern) and other.template == self.template

    def __hash__(self) -> int:
        return hash(self.template)

    def __repr__(self) -> str:
        return f"KeyPattern({self.template!r})"


def check_entity_key(entity_key: Any) -> str:
    """``entity_key`` as a string, rejecting the wildcard character."""
    value = str(entity_key)
    if WILDCARD in value:
        raise ValidationError(
            f"Entity key must not contain '{WILDCARD}'",
            details={"entity_key": value}
        )
    return value


def make_key(*parts: Any) -> str:
    """Join key parts with ``:``; dict and list parts are JSON-encoded with sorted keys."""
    rendered = []
    for part in parts:
        if isinstance(part, (dict, list, tuple)):
            rendered.append(json.dumps(part, sort_keys=True, separators=(",", ":"), default=str))
        elif part is None:
            rendered.append("")
        else:
            rendered.append(str(part))
    return ":".join(rendered)
