"""
Decoded mesh model, submesh extraction and the per-load batch cache.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from .errors import SceneError

log = logging.getLogger(__name__)

MAX_UV_CHANNELS = 8

# Index buffers hold 16-bit indices
INDEX_SIZE = 2


@dataclass
class Submesh:
    """A contiguous index range forming one drawable part of a mesh."""
    first_byte: int
    index_count: int
    first_vertex: int = 0
    vertex_count: int = 0
    topology: int = 0

    @property
    def index_start(self) -> int:
        return self.first_byte // INDEX_SIZE

    @property
    def index_end(self) -> int:
        return self.index_start + self.index_count


@dataclass
class Mesh:
    """Decoded mesh: triangle list indices plus flat per-vertex attribute arrays.

    Attribute arrays are flat float32 arrays of length vertex_count * dimension,
    or None when the mesh does not carry that attribute.
    """
    vertex_count: int
    indices: np.ndarray
    positions: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    tangents: Optional[np.ndarray] = None
    colors: Optional[np.ndarray] = None
    uvs: List[Optional[np.ndarray]] = field(default_factory=lambda: [None] * MAX_UV_CHANNELS)
    submeshes: List[Submesh] = field(default_factory=list)
    name: str = ""

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    def uv(self, channel: int) -> Optional[np.ndarray]:
        if 0 <= channel < len(self.uvs):
            return self.uvs[channel]
        return None

    def dimension(self, array: Optional[np.ndarray]) -> int:
        """Components per vertex of one of this mesh's attribute arrays."""
        if array is None or self.vertex_count == 0:
            return 0
        return array.size // self.vertex_count

    def attribute_arrays(self) -> Dict[str, np.ndarray]:
        """Present attributes keyed by name (positions, normals, ..., uv0-uv7)."""
        arrays = {}
        for name in ("positions", "normals", "tangents", "colors"):
            array = getattr(self, name)
            if array is not None:
                arrays[name] = array
        for i, uv in enumerate(self.uvs):
            if uv is not None:
                arrays[f"uv{i}"] = uv
        return arrays

    def position_array(self) -> np.ndarray:
        """Positions as an (N, 3) array; empty when the mesh has none."""
        dim = self.dimension(self.positions)
        if dim < 3:
            return np.zeros((0, 3), dtype=np.float32)
        return self.positions[: self.vertex_count * dim].reshape(self.vertex_count, dim)[:, :3]


# =============================================================================
# SUBMESH EXTRACTION
# =============================================================================

def _crop(array: Optional[np.ndarray], source_vertices: int, first: int, count: int) -> Optional[np.ndarray]:
    if array is None or array.size == 0 or source_vertices == 0:
        return array
    dim = array.size // source_vertices
    return array[first * dim : (first + count) * dim].copy()


def extract_submeshes(mesh: Mesh, first_submesh: int, submesh_count: int) -> Mesh:
    """Rebuild one renderer's mesh from a statically batched combined mesh.

    Takes submeshes [first_submesh, first_submesh + submesh_count), clamped to
    the submesh table, crops every attribute to the vertex range those
    submeshes touch and rebases their indices onto it.

    When the range selects no indices the original mesh object is returned
    unchanged, so callers cannot tell "nothing to extract" from a trivial
    extraction.
    """
    start = max(first_submesh, 0)
    stop = min(first_submesh + submesh_count, len(mesh.submeshes))

    ranges = []
    for submesh in mesh.submeshes[start:stop]:
        lo = submesh.index_start
        hi = min(submesh.index_end, len(mesh.indices))
        if hi > lo:
            ranges.append(mesh.indices[lo:hi])

    if not ranges:
        log.debug("Submesh range [%d, +%d) of '%s' selects no indices, keeping whole mesh",
                  first_submesh, submesh_count, mesh.name)
        return mesh

    selected = np.concatenate(ranges)
    min_index = int(selected.min())
    max_index = int(selected.max())
    count = max_index - min_index + 1
    source_vertices = mesh.vertex_count

    return Mesh(
        vertex_count=count,
        indices=(selected - min_index).astype(np.uint32),
        positions=_crop(mesh.positions, source_vertices, min_index, count),
        normals=_crop(mesh.normals, source_vertices, min_index, count),
        tangents=_crop(mesh.tangents, source_vertices, min_index, count),
        colors=_crop(mesh.colors, source_vertices, min_index, count),
        uvs=[_crop(uv, source_vertices, min_index, count) for uv in mesh.uvs],
        name=mesh.name,
    )


# =============================================================================
# BATCH CACHE
# =============================================================================

class MeshCache:
    """Decode-once cache for combined meshes, scoped to one scene load.

    Keyed by the (file_id, path_id) of the mesh asset. Failures are cached
    too: every later lookup of a broken mesh re-raises the original error
    without decoding again.
    """

    def __init__(self):
        self._entries: Dict[Tuple[int, int], Union[Mesh, SceneError]] = {}
        self.decodes = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Tuple[int, int]) -> bool:
        return key in self._entries

    def get_or_decode(self, key: Tuple[int, int], decode: Callable[[], Mesh]) -> Mesh:
        if key not in self._entries:
            self.decodes += 1
            try:
                self._entries[key] = decode()
            except SceneError as e:
                self._entries[key] = e
                raise
        entry = self._entries[key]
        if isinstance(entry, SceneError):
            raise entry
        return entry

    def clear(self):
        self._entries.clear()
