"""
Declared shapes of statistics tree nodes.

Every node type names itself with a stable token (``NAME``) and lists its
scalar attributes (``FIELDS``) and its children (``CHILDREN``) explicitly.
The codec dispatches on these declarations only, there is no runtime type
discovery.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Pattern, Tuple


class KeyFormat:
    """Canonical token and plain-data forms of one kind of mapping key"""

    def __init__(self, pattern: str,
                 to_token: Callable[[Any], str],
                 from_match: Callable[[Any], Any],
                 to_data: Callable[[Any], Any],
                 from_data: Callable[[Any], Any]):
        self.pattern: Pattern = re.compile(pattern)
        self._to_token = to_token
        self._from_match = from_match
        self.to_data = to_data
        self.from_data = from_data

    def token(self, key: Any) -> str:
        return self._to_token(key)

    def parse(self, token: str) -> Any:
        """Inverse of token(); raises ValueError for foreign entries"""
        match = self.pattern.fullmatch(token)
        if match is None:
            raise ValueError(f"'{token}' is not a valid key token")
        return self._from_match(match)

    def matches(self, token: str) -> bool:
        try:
            self.parse(token)
            return True
        except (ValueError, KeyError):
            return False


@dataclass(frozen=True)
class Child:
    """A single nested node stored under a fixed entry name"""
    attr: str
    node_type: type
    entry: str


@dataclass(frozen=True)
class Children:
    """A keyed mapping of nested nodes.

    With an ``entry`` the children are grouped in a sub directory of that
    name, with an empty ``entry`` they sit directly in the node's directory.
    """
    attr: str
    node_type: type
    key: KeyFormat
    entry: str = ""


class TreeNode:
    """Base for all node types of the statistics tree"""
    __slots__ = ()

    NAME = ""
    FIELDS: Tuple[str, ...] = ()
    CHILDREN: Tuple[Any, ...] = ()

    @classmethod
    def is_leaf_type(cls) -> bool:
        return not cls.CHILDREN

    def field_data(self) -> Dict[str, Any]:
        """Scalar attributes as plain, codec-friendly values"""
        return {name: getattr(self, name) for name in self.FIELDS}

    @classmethod
    def from_parts(cls, fields: Dict[str, Any], children: Dict[str, Any]) -> "TreeNode":
        return cls(**fields, **children)
