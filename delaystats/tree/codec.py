"""
Generic tree codec.

Maps any node of a statistics tree onto the file system, either inline (the
whole subtree encoded as one file) or expanded (a directory holding one entry
per child, recursively), down to a caller-chosen leaf set of node types.

Layout of an expanded node at ``<path>/``::

    _node<ext>                 scalar fields, if the node type declares any
    <entry>/ or <entry><ext>   a single child (Child)
    <entry>/<token>...         a keyed child of a grouped mapping (Children)
    <token>/ or <token><ext>   a keyed child of a direct mapping

An inline node at ``<path>`` is the single file ``<path><ext>``.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Union

from ..core.errors import MalformedTree, SerializationError
from .formats import PickleFormat, SerdeFormat, get_format
from .shape import Child, Children, TreeNode

logger = logging.getLogger(__name__)

FIELDS_ENTRY = "_node"
NODE_TAG = "node"

PathLike = Union[str, Path]


class TreeCodec:
    """Save and load statistics tree nodes with a caller-chosen cut depth"""

    def __init__(self, serde_format: Union[str, SerdeFormat, None] = None, strict: bool = False):
        if serde_format is None:
            serde_format = PickleFormat()
        elif isinstance(serde_format, str):
            serde_format = get_format(serde_format)
        self.format = serde_format
        self.strict = strict

    # ------------------------------------------------------------------ paths

    def file_path(self, path: PathLike) -> Path:
        path = Path(path)
        return path.with_name(path.name + self.format.extension)

    def entry_path(self, parent_path: PathLike, parent_type: type, attr: str, key: Any = None) -> Path:
        """Path of one child of an expanded node, without extension"""
        spec = _child_spec(parent_type, attr)
        parent_path = Path(parent_path)
        if isinstance(spec, Child):
            return parent_path / spec.entry
        container = parent_path / spec.entry if spec.entry else parent_path
        return container / spec.key.token(key)

    def exists(self, path: PathLike) -> bool:
        path = Path(path)
        return path.is_dir() or self.file_path(path).is_file()

    # ------------------------------------------------------------ plain data

    def encode(self, node: TreeNode) -> Dict[str, Any]:
        """Whole subtree as plain, format-independent data"""
        data: Dict[str, Any] = {NODE_TAG: node.NAME}
        data.update(node.field_data())
        for spec in node.CHILDREN:
            value = getattr(node, spec.attr)
            if isinstance(spec, Child):
                data[spec.attr] = self.encode(value)
            else:
                data[spec.attr] = [
                    [spec.key.to_data(key), self.encode(value[key])]
                    for key in sorted(value, key=spec.key.token)
                ]
        return data

    def decode(self, node_type: type, data: Any, where: Any = None) -> TreeNode:
        if not isinstance(data, dict) or data.get(NODE_TAG) != node_type.NAME:
            found = data.get(NODE_TAG) if isinstance(data, dict) else type(data).__name__
            raise MalformedTree(f"Expected {node_type.NAME}, found {found}", where, node_type.NAME)

        try:
            fields = {name: data[name] for name in node_type.FIELDS}
        except KeyError as e:
            raise MalformedTree(f"Missing field {e}", where, node_type.NAME)

        children: Dict[str, Any] = {}
        for spec in node_type.CHILDREN:
            if spec.attr not in data:
                raise MalformedTree(f"Missing child '{spec.attr}'", where, node_type.NAME)
            raw = data[spec.attr]
            if isinstance(spec, Child):
                children[spec.attr] = self.decode(spec.node_type, raw, where)
                continue
            if not isinstance(raw, list):
                raise MalformedTree(f"Child mapping '{spec.attr}' is not a list of pairs", where, node_type.NAME)
            mapping = {}
            for pair in raw:
                if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                    raise MalformedTree(f"Malformed entry in '{spec.attr}'", where, node_type.NAME)
                try:
                    key = spec.key.from_data(pair[0])
                except (ValueError, KeyError, TypeError, IndexError) as e:
                    raise MalformedTree(f"Malformed key {pair[0]!r} in '{spec.attr}': {e}", where, node_type.NAME)
                if key in mapping:
                    raise MalformedTree(f"Duplicate key {pair[0]!r} in '{spec.attr}'", where, node_type.NAME)
                mapping[key] = self.decode(spec.node_type, pair[1], where)
            children[spec.attr] = mapping

        return self._construct(node_type, fields, children, where)

    def dumps(self, node: TreeNode) -> bytes:
        try:
            return self.format.dumps(self.encode(node))
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot encode {node.NAME}: {e}", node_type=node.NAME)

    def loads(self, raw: bytes, node_type: type, where: Any = None) -> TreeNode:
        try:
            data = self.format.loads(raw)
        except Exception as e:
            raise MalformedTree(f"Not a valid {self.format.name} unit: {e}", where, node_type.NAME)
        return self.decode(node_type, data, where)

    # ------------------------------------------------------------------- save

    def save(self, node: TreeNode, path: PathLike, leaf_set: Optional[Iterable[str]] = None) -> Path:
        """Write ``node`` at ``path``; returns the file or directory written"""
        leaves = frozenset(leaf_set or ())
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._save_node(node, path, leaves)
        return self.file_path(path) if self._is_inline(type(node), leaves) else path

    def _is_inline(self, node_type: type, leaves: FrozenSet[str]) -> bool:
        return node_type.is_leaf_type() or node_type.NAME in leaves

    def _save_node(self, node: TreeNode, path: Path, leaves: FrozenSet[str]) -> None:
        if self._is_inline(type(node), leaves):
            _atomic_write(self.file_path(path), self.dumps(node))
            if path.is_dir():
                shutil.rmtree(path)
            return

        path.mkdir(parents=True, exist_ok=True)
        stale_file = self.file_path(path)
        if stale_file.is_file():
            stale_file.unlink()

        if node.FIELDS:
            try:
                raw = self.format.dumps({NODE_TAG: node.NAME, **node.field_data()})
            except (TypeError, ValueError) as e:
                raise SerializationError(f"Cannot encode fields: {e}", path, node.NAME)
            _atomic_write(self.file_path(path / FIELDS_ENTRY), raw)

        for spec in node.CHILDREN:
            value = getattr(node, spec.attr)
            if isinstance(spec, Child):
                self._save_node(value, path / spec.entry, leaves)
                continue

            container = path / spec.entry if spec.entry else path
            if spec.entry and not value:
                if container.is_dir():
                    shutil.rmtree(container)
                continue
            container.mkdir(exist_ok=True)
            tokens = set()
            for key in sorted(value, key=spec.key.token):
                token = spec.key.token(key)
                self._save_node(value[key], container / token, leaves)
                tokens.add(token)
            self._prune(container, spec, tokens)

        logger.debug(f"Saved {node.NAME} expanded at {path}")

    def _prune(self, container: Path, spec: Children, keep: Set[str]) -> None:
        """Remove entries of a previous save that are not part of this one"""
        for entry in container.iterdir():
            token = self._entry_token(entry)
            if token is None or token in keep or not spec.key.matches(token):
                continue
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            logger.debug(f"Removed stale entry {entry}")

    def _entry_token(self, entry: Path) -> Optional[str]:
        if entry.name.startswith("."):
            return None
        if entry.is_dir():
            return entry.name
        if entry.name.endswith(self.format.extension):
            return entry.name[:-len(self.format.extension)]
        return None

    # ------------------------------------------------------------------- load

    def load(self, path: PathLike, node_type: type, leaf_set: Optional[Iterable[str]] = None) -> TreeNode:
        node = self.load_optional(path, node_type, leaf_set)
        if node is None:
            raise FileNotFoundError(f"No {node_type.NAME} found at {path}")
        return node

    def load_optional(self, path: PathLike, node_type: type,
                      leaf_set: Optional[Iterable[str]] = None) -> Optional[TreeNode]:
        """Load a node, or return None when nothing is stored at ``path``"""
        return self._load_node(Path(path), node_type, frozenset(leaf_set or ()))

    def _load_node(self, path: Path, node_type: type, leaves: FrozenSet[str]) -> Optional[TreeNode]:
        file_path = self.file_path(path)
        # Expanded and inline forms decode to the same node, so either is
        # accepted; the leaf set only decides which one is tried first.
        if self._is_inline(node_type, leaves) and file_path.is_file():
            return self._load_file(file_path, node_type)
        if path.is_dir() and not node_type.is_leaf_type():
            return self._load_expanded(path, node_type, leaves)
        if file_path.is_file():
            return self._load_file(file_path, node_type)
        return None

    def _load_file(self, file_path: Path, node_type: type) -> TreeNode:
        return self.loads(file_path.read_bytes(), node_type, file_path)

    def _load_expanded(self, path: Path, node_type: type, leaves: FrozenSet[str]) -> TreeNode:
        fields: Dict[str, Any] = {}
        if node_type.FIELDS:
            fields_file = self.file_path(path / FIELDS_ENTRY)
            if not fields_file.is_file():
                raise MalformedTree(f"Missing {fields_file.name}", path, node_type.NAME)
            try:
                data = self.format.loads(fields_file.read_bytes())
            except Exception as e:
                raise MalformedTree(f"Cannot decode fields: {e}", fields_file, node_type.NAME)
            if not isinstance(data, dict) or data.get(NODE_TAG) != node_type.NAME:
                raise MalformedTree("Fields belong to another node type", fields_file, node_type.NAME)
            try:
                fields = {name: data[name] for name in node_type.FIELDS}
            except KeyError as e:
                raise MalformedTree(f"Missing field {e}", fields_file, node_type.NAME)

        known = {FIELDS_ENTRY}
        children: Dict[str, Any] = {}
        direct = [spec for spec in node_type.CHILDREN if isinstance(spec, Children) and not spec.entry]

        for spec in node_type.CHILDREN:
            if isinstance(spec, Child):
                known.add(spec.entry)
                child = self._load_node(path / spec.entry, spec.node_type, leaves)
                children[spec.attr] = child if child is not None else spec.node_type()
            elif spec.entry:
                known.add(spec.entry)
                container = path / spec.entry
                children[spec.attr] = self._load_mapping(container, spec, leaves) if container.is_dir() else {}
            else:
                children[spec.attr] = {}

        for token in self._tokens(path):
            if token in known:
                continue
            for spec in direct:
                try:
                    key = spec.key.parse(token)
                except (ValueError, KeyError):
                    continue
                child = self._load_node(path / token, spec.node_type, leaves)
                if child is not None:
                    children[spec.attr][key] = child
                break
            else:
                self._unknown_entry(path / token, node_type)

        return self._construct(node_type, fields, children, path)

    def _load_mapping(self, container: Path, spec: Children, leaves: FrozenSet[str]) -> Dict[Any, TreeNode]:
        mapping = {}
        for token in self._tokens(container):
            try:
                key = spec.key.parse(token)
            except (ValueError, KeyError):
                self._unknown_entry(container / token, spec.node_type)
                continue
            child = self._load_node(container / token, spec.node_type, leaves)
            if child is not None:
                mapping[key] = child
        return mapping

    def _tokens(self, directory: Path) -> List[str]:
        tokens = set()
        for entry in directory.iterdir():
            token = self._entry_token(entry)
            if token is not None:
                tokens.add(token)
            elif not entry.name.startswith("."):
                self._unknown_entry(entry, None)
        return sorted(tokens)

    def _unknown_entry(self, entry: Path, node_type: Optional[type]) -> None:
        if self.strict:
            raise MalformedTree(f"Unexpected entry {entry.name}", entry,
                                node_type.NAME if node_type is not None else None)
        logger.debug(f"Skipping unknown entry {entry}")

    def _construct(self, node_type: type, fields: Dict[str, Any], children: Dict[str, Any], where: Any) -> TreeNode:
        try:
            return node_type.from_parts(fields, children)
        except ValueError as e:
            raise SerializationError(f"Invalid {node_type.NAME} data: {e}", where, node_type.NAME)
        except TypeError as e:
            raise MalformedTree(f"Cannot build {node_type.NAME}: {e}", where, node_type.NAME)


def _child_spec(node_type: type, attr: str):
    for spec in node_type.CHILDREN:
        if spec.attr == attr:
            return spec
    raise KeyError(f"{node_type.NAME} has no child '{attr}'")


def _atomic_write(target: Path, raw: bytes) -> None:
    """Write to a temporary sibling and move it into place"""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(raw)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
