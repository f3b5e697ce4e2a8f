"""
Host collaborator contract.

The extraction core never parses container files itself. It asks an
``AssetSource`` for structured-value trees, for external vertex bytes and
for decoded textures. ``MemoryAssetSource`` is a dictionary-backed source
that can also be loaded from a JSON scene dump.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from .errors import IOFailure, MalformedData
from .records import StreamingInfo, as_bytes

log = logging.getLogger(__name__)

ARCHIVE_PREFIX = "archive:/"


@dataclass
class TextureImage:
    """Decoded texture pixels in BGRA byte order."""
    pixels_bgra: bytes
    width: int
    height: int


class AssetSource(ABC):
    """Access to one serialized asset file and the objects it can reach."""

    @property
    @abstractmethod
    def unity_version(self) -> str:
        """Engine version string of the file, e.g. ``2019.4.31f1``."""

    @abstractmethod
    def objects_of_type(self, class_name: str) -> Iterable[int]:
        """Path ids of the local objects of one class."""

    @abstractmethod
    def get_field(self, file_id: int, path_id: int) -> Optional[Dict[str, Any]]:
        """Structured-value tree of an object, or None when absent."""

    @abstractmethod
    def get_vertex_bytes(self, stream: StreamingInfo) -> bytes:
        """Bytes of externally stored vertex data. Raises IOFailure."""

    def decode_texture(self, file_id: int, path_id: int) -> Optional[TextureImage]:
        """Decoded texture pixels, or None when the host cannot decode them."""
        return None


# =============================================================================
# EXTERNAL VERTEX BYTES
# =============================================================================

# A container entry is either its bytes or (container file path, entry offset)
ContainerEntry = Union[bytes, Tuple[str, int]]


class ResourceResolver:
    """Resolves ``StreamingInfo`` locations to bytes.

    Strategies, in order:
    1. Container entry looked up by the trimmed name
       (``archive:/CAB-x/CAB-x.resS`` -> ``CAB-x.resS``).
    2. A file on disk, relative to ``base_dir`` unless absolute. Paths with
       the archive prefix are reduced to their file name, covering resources
       extracted next to the serialized file.
    3. Container entry looked up by the full, untrimmed name.
    """

    def __init__(self, base_dir: Optional[str] = None,
                 entries: Optional[Dict[str, ContainerEntry]] = None):
        self.base_dir = base_dir
        self.entries: Dict[str, ContainerEntry] = dict(entries or {})

    def read(self, stream: StreamingInfo) -> bytes:
        path = stream.path

        if path.startswith(ARCHIVE_PREFIX):
            trimmed = os.path.basename(path[len(ARCHIVE_PREFIX):])
            if trimmed in self.entries:
                return self._read_entry(trimmed, stream)

        file_path = self._disk_path(path)
        if file_path is not None and os.path.isfile(file_path):
            return self._read_file(file_path, stream.offset, stream.size)

        if path in self.entries:
            return self._read_entry(path, stream)

        raise IOFailure(f"Can't find resource '{path}' for vertex data")

    def _disk_path(self, path: str) -> Optional[str]:
        if path.startswith(ARCHIVE_PREFIX):
            path = os.path.basename(path)
        if not path:
            return None
        if not os.path.isabs(path) and self.base_dir:
            path = os.path.join(self.base_dir, path)
        return path

    def _read_entry(self, name: str, stream: StreamingInfo) -> bytes:
        entry = self.entries[name]
        if isinstance(entry, (bytes, bytearray)):
            data = bytes(entry[stream.offset : stream.offset + stream.size])
            if len(data) < stream.size:
                raise MalformedData(
                    f"Resource '{name}' too short: wanted {stream.size} bytes at {stream.offset}, got {len(data)}"
                )
            return data
        container_path, entry_offset = entry
        return self._read_file(container_path, entry_offset + stream.offset, stream.size)

    @staticmethod
    def _read_file(file_path: str, offset: int, size: int) -> bytes:
        try:
            with open(file_path, "rb") as f:
                f.seek(offset)
                data = f.read(size)
        except OSError as e:
            raise IOFailure(f"Can't read resource '{file_path}': {e}") from e
        if len(data) < size:
            raise MalformedData(
                f"Resource '{file_path}' too short: wanted {size} bytes at {offset}, got {len(data)}"
            )
        return data


# =============================================================================
# IN-MEMORY SOURCE
# =============================================================================

class MemoryAssetSource(AssetSource):
    """Asset source backed by plain dictionaries.

    Objects are keyed by (file_id, path_id); only file 0 objects are listed
    by ``objects_of_type``, objects in other files are reachable through
    pointers only.
    """

    def __init__(self, version: str,
                 resolver: Optional[ResourceResolver] = None,
                 texture_decoder: Optional[Callable[[int, int], Optional[TextureImage]]] = None):
        self._version = version
        self.resolver = resolver or ResourceResolver()
        self.texture_decoder = texture_decoder
        self._objects: Dict[Tuple[int, int], Tuple[str, Dict[str, Any]]] = {}

    @property
    def unity_version(self) -> str:
        return self._version

    def add(self, class_name: str, path_id: int, tree: Dict[str, Any], file_id: int = 0):
        """Register an object tree."""
        self._objects[(file_id, path_id)] = (class_name, tree)

    def objects_of_type(self, class_name: str) -> Iterable[int]:
        return [
            path_id
            for (file_id, path_id), (cls, _) in self._objects.items()
            if file_id == 0 and cls == class_name
        ]

    def get_field(self, file_id: int, path_id: int) -> Optional[Dict[str, Any]]:
        obj = self._objects.get((file_id, path_id))
        return obj[1] if obj is not None else None

    def get_vertex_bytes(self, stream: StreamingInfo) -> bytes:
        return self.resolver.read(stream)

    def decode_texture(self, file_id: int, path_id: int) -> Optional[TextureImage]:
        if self.texture_decoder is None:
            return None
        return self.texture_decoder(file_id, path_id)

    @classmethod
    def from_json(cls, filepath: str) -> "MemoryAssetSource":
        """Load a JSON scene dump.

        Format::

            {
              "version": "2019.4.31f1",
              "resources": {"CAB-x.resS": {"$bytes": "..."}},
              "objects": [
                {"file_id": 0, "path_id": 1, "class": "Transform", "fields": {...}}
              ]
            }

        External vertex data named in the dump is also looked up on disk next
        to the dump file.
        """
        dump_path = Path(filepath)
        try:
            with open(dump_path, "r", encoding="utf-8") as f:
                dump = json.load(f)
        except OSError as e:
            raise IOFailure(f"Can't read scene dump '{filepath}': {e}") from e
        except json.JSONDecodeError as e:
            raise MalformedData(f"Invalid scene dump '{filepath}': {e}") from e

        entries = {name: as_bytes(value) for name, value in dump.get("resources", {}).items()}
        resolver = ResourceResolver(base_dir=str(dump_path.parent), entries=entries)
        source = cls(dump.get("version", ""), resolver=resolver)

        for obj in dump.get("objects", []):
            source.add(obj["class"], int(obj["path_id"]), obj.get("fields", {}),
                       file_id=int(obj.get("file_id", 0)))

        log.info("Loaded scene dump %s: %d objects", dump_path.name, len(source._objects))
        return source
