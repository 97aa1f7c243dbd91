"""
Interchangeable serde formats for tree units.
Both formats encode the same plain structures (dicts, lists, strings, numbers)
and decode them to identical logical trees.
"""

import json
import pickle
from typing import Any, Dict, Type


class SerdeFormat:
    """A byte codec for plain, already tree-encoded data"""
    name = ""
    extension = ""

    def dumps(self, data: Any) -> bytes:
        raise NotImplementedError

    def loads(self, raw: bytes) -> Any:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class JsonFormat(SerdeFormat):
    """Human-readable structured text"""
    name = "json"
    extension = ".json"

    def dumps(self, data: Any) -> bytes:
        return json.dumps(data, sort_keys=True, indent=1, allow_nan=False).encode("utf-8")

    def loads(self, raw: bytes) -> Any:
        return json.loads(raw.decode("utf-8"))


class PickleFormat(SerdeFormat):
    """Compact binary form"""
    name = "pickle"
    extension = ".pkl"
    protocol = 4  # fixed, so the same tree always yields the same bytes

    def dumps(self, data: Any) -> bytes:
        return pickle.dumps(data, protocol=self.protocol)

    def loads(self, raw: bytes) -> Any:
        return pickle.loads(raw)


FORMATS: Dict[str, Type[SerdeFormat]] = {
    JsonFormat.name: JsonFormat,
    PickleFormat.name: PickleFormat,
}


def get_format(name: str) -> SerdeFormat:
    try:
        return FORMATS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown serde format '{name}', expected one of {sorted(FORMATS)}")
