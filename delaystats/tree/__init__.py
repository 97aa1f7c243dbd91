"""
Persistence of statistics trees.
Exports the node shape declarations, the serde formats and the tree codec.
"""

from .shape import TreeNode, Child, Children, KeyFormat
from .formats import SerdeFormat, JsonFormat, PickleFormat, get_format
from .codec import TreeCodec

__all__ = [
    "TreeNode",
    "Child",
    "Children",
    "KeyFormat",
    "SerdeFormat",
    "JsonFormat",
    "PickleFormat",
    "get_format",
    "TreeCodec"
]
