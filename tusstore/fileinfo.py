"""Description of an upload and its JSON representation in the info object."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

# Characters the info object encoding escapes even though JSON allows them raw.
_EXTRA_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _sorted_mapping(mapping: Optional[Mapping[str, Any]]) -> Optional[dict]:
    if mapping is None:
        return None
    return dict(sorted(mapping.items()))


@dataclass
class FileInfo:
    """Information about one upload: its size, offset, metadata and storage."""

    id: str = ""
    size: int = 0
    size_is_deferred: bool = False
    offset: int = 0
    meta_data: Optional[dict[str, str]] = None
    is_partial: bool = False
    is_final: bool = False
    partial_uploads: Optional[list[str]] = None
    storage: Optional[dict[str, str]] = None

    def to_json(self) -> bytes:
        """Encode as compact UTF-8 JSON with fixed field order and sorted maps."""
        document = {
            "ID": self.id,
            "Size": self.size,
            "SizeIsDeferred": self.size_is_deferred,
            "Offset": self.offset,
            "MetaData": _sorted_mapping(self.meta_data),
            "IsPartial": self.is_partial,
            "IsFinal": self.is_final,
            "PartialUploads": None if self.partial_uploads is None else list(self.partial_uploads),
            "Storage": _sorted_mapping(self.storage),
        }
        text = json.dumps(document, ensure_ascii=False, separators=(",", ":"))
        for char, escaped in _EXTRA_ESCAPES:
            text = text.replace(char, escaped)
        return text.encode("utf-8")

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "FileInfo":
        """Decode an info object; missing or null fields take their zero value."""
        document = json.loads(data)
        if not isinstance(document, dict):
            raise ValueError("file info must be a JSON object")
        meta_data = document.get("MetaData")
        partial_uploads = document.get("PartialUploads")
        storage = document.get("Storage")
        return cls(
            id=document.get("ID") or "",
            size=int(document.get("Size") or 0),
            size_is_deferred=bool(document.get("SizeIsDeferred") or False),
            offset=int(document.get("Offset") or 0),
            meta_data=None if meta_data is None else dict(meta_data),
            is_partial=bool(document.get("IsPartial") or False),
            is_final=bool(document.get("IsFinal") or False),
            partial_uploads=None if partial_uploads is None else list(partial_uploads),
            storage=None if storage is None else dict(storage),
        )