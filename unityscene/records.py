"""
Typed component records.

The host hands out every serialized object as a structured-value tree
(nested dicts and lists keyed by serialized field names). Each record class
declares a schema of ``Field`` entries; ``Record.from_tree`` walks the tree,
converts every field and fails closed with ``MissingField`` when a required
field is absent.

Array fields may be given either as plain lists or wrapped the way the
engine's type trees wrap them (``{"Array": [...]}``). Byte arrays may be
``bytes``, a list of ints, or ``{"$bytes": "<base64>"}`` as written by JSON
scene dumps.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, List, Optional, Tuple

from .errors import MalformedData, MissingField, SceneError
from .types import Quaternion, Vector

log = logging.getLogger(__name__)

_MISSING = object()


def lookup(tree: Any, path: str) -> Any:
    """Follow a dotted field path through a tree, or return ``_MISSING``."""
    node = tree
    for part in path.split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        else:
            return _MISSING
    return _unwrap_array(node)


def _unwrap_array(node: Any) -> Any:
    if isinstance(node, dict) and len(node) == 1 and "Array" in node:
        return node["Array"]
    return node


# =============================================================================
# CONVERTERS
# =============================================================================

def as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected integer, got {type(value).__name__}")
    return int(value)


def as_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected number, got {type(value).__name__}")
    return float(value)


def as_str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected string, got {type(value).__name__}")
    return value


def as_bool(value: Any) -> bool:
    return bool(value)


def as_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, dict) and "$bytes" in value:
        return base64.b64decode(value["$bytes"])
    if isinstance(value, list):
        return bytes(value)
    raise TypeError(f"expected byte array, got {type(value).__name__}")


def as_vector(value: Any) -> Vector:
    return Vector(as_float(value["x"]), as_float(value["y"]), as_float(value["z"]))


def as_quaternion(value: Any) -> Quaternion:
    return Quaternion(
        as_float(value["x"]),
        as_float(value["y"]),
        as_float(value["z"]),
        as_float(value["w"]),
    )


def as_property_name(value: Any) -> str:
    # Pre-5.x material keys are wrapped as {"name": "..."}
    if isinstance(value, dict):
        value = value.get("name")
    return as_str(value)


def list_of(convert: Callable) -> Callable:
    def _convert(value: Any) -> list:
        if not isinstance(value, list):
            raise TypeError(f"expected array, got {type(value).__name__}")
        return [convert(item) for item in value]
    return _convert


def lenient_list_of(convert: Callable) -> Callable:
    """Like ``list_of`` but drops entries that fail to convert."""
    def _convert(value: Any) -> list:
        if not isinstance(value, list):
            raise TypeError(f"expected array, got {type(value).__name__}")
        items = []
        for i, item in enumerate(value):
            try:
                items.append(convert(item))
            except SceneError as e:
                log.debug("Dropping array entry %d: %s", i, e)
        return items
    return _convert


# =============================================================================
# SCHEMA
# =============================================================================

@dataclass(frozen=True)
class Field:
    """One schema entry: attribute name, tree path and converter."""
    name: str
    path: str
    convert: Callable
    required: bool = True
    default: Any = None
    default_factory: Optional[Callable] = None

    def make_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return self.default


class Record:
    """Base for records built from structured-value trees."""

    FIELDS: ClassVar[Tuple[Field, ...]] = ()

    @classmethod
    def from_tree(cls, tree: Any):
        if not isinstance(tree, dict):
            raise MissingField(cls.__name__, "<root>")

        values = {}
        for f in cls.FIELDS:
            raw = lookup(tree, f.path)
            if raw is _MISSING or raw is None:
                if f.required:
                    raise MissingField(cls.__name__, f.path)
                values[f.name] = f.make_default()
                continue
            try:
                values[f.name] = f.convert(raw)
            except SceneError:
                raise
            except KeyError as e:
                raise MissingField(cls.__name__, f"{f.path}.{e.args[0]}") from None
            except (TypeError, ValueError) as e:
                raise MalformedData(f"{cls.__name__}.{f.path}: {e}") from None
        return cls(**values)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class PPtr(Record):
    """Object pointer (file id + path id). Path id 0 is the null pointer."""
    file_id: int = 0
    path_id: int = 0

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("file_id", "m_FileID", as_int, required=False, default=0),
        Field("path_id", "m_PathID", as_int),
    )

    @property
    def is_null(self) -> bool:
        return self.path_id == 0

    @property
    def key(self) -> Tuple[int, int]:
        return (self.file_id, self.path_id)


NULL_PTR = PPtr()


def as_pptr(value: Any) -> PPtr:
    return PPtr.from_tree(value)


@dataclass
class TransformRecord(Record):
    game_object: PPtr
    local_position: Vector
    local_rotation: Quaternion
    local_scale: Vector
    father: PPtr = NULL_PTR
    children: List[PPtr] = field(default_factory=list)

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("game_object", "m_GameObject", as_pptr),
        Field("local_position", "m_LocalPosition", as_vector),
        Field("local_rotation", "m_LocalRotation", as_quaternion),
        Field("local_scale", "m_LocalScale", as_vector),
        Field("father", "m_Father", as_pptr, required=False, default=NULL_PTR),
        Field("children", "m_Children", lenient_list_of(as_pptr), required=False, default_factory=list),
    )


@dataclass
class GameObjectRecord(Record):
    name: str
    is_active: bool = True

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("name", "m_Name", as_str),
        Field("is_active", "m_IsActive", as_bool, required=False, default=True),
    )


@dataclass
class MeshFilterRecord(Record):
    game_object: PPtr
    mesh: PPtr

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("game_object", "m_GameObject", as_pptr),
        Field("mesh", "m_Mesh", as_pptr),
    )


@dataclass
class MeshColliderRecord(Record):
    game_object: PPtr
    mesh: PPtr

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("game_object", "m_GameObject", as_pptr),
        Field("mesh", "m_Mesh", as_pptr),
    )


@dataclass
class StaticBatchInfo(Record):
    first_submesh: int
    submesh_count: int

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("first_submesh", "firstSubMesh", as_int),
        Field("submesh_count", "subMeshCount", as_int),
    )

    @property
    def is_batched(self) -> bool:
        return self.submesh_count > 0


@dataclass
class MeshRendererRecord(Record):
    game_object: PPtr
    materials: List[PPtr] = field(default_factory=list)
    static_batch_info: Optional[StaticBatchInfo] = None
    static_batch_root: PPtr = NULL_PTR

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("game_object", "m_GameObject", as_pptr),
        Field("materials", "m_Materials", list_of(as_pptr), required=False, default_factory=list),
        Field("static_batch_info", "m_StaticBatchInfo", StaticBatchInfo.from_tree, required=False),
        Field("static_batch_root", "m_StaticBatchRoot", as_pptr, required=False, default=NULL_PTR),
    )

    @property
    def is_batched(self) -> bool:
        return self.static_batch_info is not None and self.static_batch_info.is_batched


@dataclass
class SkinnedMeshRendererRecord(Record):
    game_object: PPtr
    mesh: PPtr
    root_bone: PPtr = NULL_PTR
    materials: List[PPtr] = field(default_factory=list)
    bones: List[PPtr] = field(default_factory=list)

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("game_object", "m_GameObject", as_pptr),
        Field("mesh", "m_Mesh", as_pptr),
        Field("root_bone", "m_RootBone", as_pptr, required=False, default=NULL_PTR),
        Field("materials", "m_Materials", list_of(as_pptr), required=False, default_factory=list),
        Field("bones", "m_Bones", lenient_list_of(as_pptr), required=False, default_factory=list),
    )


@dataclass
class ChannelInfo(Record):
    """One vertex channel: stream, byte offset in the vertex, format code, dimension."""
    stream: int
    offset: int
    format: int
    dimension: int

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("stream", "stream", as_int),
        Field("offset", "offset", as_int),
        Field("format", "format", as_int),
        Field("dimension", "dimension", as_int),
    )

    @property
    def components(self) -> int:
        # Upper bits carry flags on newer engine versions
        return self.dimension & 0x0F


@dataclass
class SubMeshInfo(Record):
    first_byte: int
    index_count: int
    topology: int = 0
    first_vertex: int = 0
    vertex_count: int = 0

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("first_byte", "firstByte", as_int),
        Field("index_count", "indexCount", as_int),
        Field("topology", "topology", as_int, required=False, default=0),
        Field("first_vertex", "firstVertex", as_int, required=False, default=0),
        Field("vertex_count", "vertexCount", as_int, required=False, default=0),
    )


@dataclass
class StreamingInfo(Record):
    """Location of vertex data stored outside the serialized file."""
    offset: int = 0
    size: int = 0
    path: str = ""

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("offset", "offset", as_int, required=False, default=0),
        Field("size", "size", as_int, required=False, default=0),
        Field("path", "path", as_str, required=False, default=""),
    )

    @property
    def is_external(self) -> bool:
        return self.size > 0 and self.path != ""


@dataclass
class VertexDataRecord(Record):
    vertex_count: int
    channels: List[ChannelInfo]
    data: bytes = b""

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("vertex_count", "m_VertexCount", as_int),
        Field("channels", "m_Channels", list_of(ChannelInfo.from_tree)),
        Field("data", "m_DataSize", as_bytes, required=False, default=b""),
    )


@dataclass
class MeshRecord(Record):
    index_buffer: bytes
    vertex_data: VertexDataRecord
    name: str = ""
    submeshes: List[SubMeshInfo] = field(default_factory=list)
    stream_data: Optional[StreamingInfo] = None

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("index_buffer", "m_IndexBuffer", as_bytes),
        Field("vertex_data", "m_VertexData", VertexDataRecord.from_tree),
        Field("name", "m_Name", as_str, required=False, default=""),
        Field("submeshes", "m_SubMeshes", list_of(SubMeshInfo.from_tree), required=False, default_factory=list),
        Field("stream_data", "m_StreamData", StreamingInfo.from_tree, required=False),
    )


@dataclass
class TexEnv(Record):
    name: str
    texture: PPtr

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("name", "first", as_property_name),
        Field("texture", "second.m_Texture", as_pptr),
    )


@dataclass
class MaterialRecord(Record):
    name: str = ""
    tex_envs: List[TexEnv] = field(default_factory=list)

    FIELDS: ClassVar[Tuple[Field, ...]] = (
        Field("name", "m_Name", as_str, required=False, default=""),
        Field("tex_envs", "m_SavedProperties.m_TexEnvs", lenient_list_of(TexEnv.from_tree),
              required=False, default_factory=list),
    )
