"""
Vertex stream decoder.

Unity packs vertex attributes into one byte buffer split into streams. Each
stream interleaves the channels assigned to it with a fixed per-vertex
stride; streams follow each other, each occupying stride * vertex_count
bytes. The channel table gives every channel's stream, byte offset within a
vertex, format code and component count.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from .errors import MalformedData
from .formats import (
    INTEGER_FORMATS,
    Semantic,
    VertexFormat,
    VertexProfile,
    format_size,
)
from .mesh import INDEX_SIZE, MAX_UV_CHANNELS, Mesh, Submesh
from .records import ChannelInfo, MeshRecord

log = logging.getLogger(__name__)

_DTYPES = {
    VertexFormat.FLOAT32: np.dtype("<f4"),
    VertexFormat.FLOAT16: np.dtype("<f2"),
    VertexFormat.UNORM8: np.dtype("u1"),
    VertexFormat.SNORM8: np.dtype("i1"),
    VertexFormat.UNORM16: np.dtype("<u2"),
    VertexFormat.SNORM16: np.dtype("<i2"),
    VertexFormat.UINT8: np.dtype("u1"),
    VertexFormat.SINT8: np.dtype("i1"),
    VertexFormat.UINT16: np.dtype("<u2"),
    VertexFormat.SINT16: np.dtype("<i2"),
    VertexFormat.UINT32: np.dtype("<u4"),
    VertexFormat.SINT32: np.dtype("<i4"),
}

_IGNORED_SEMANTICS = frozenset({Semantic.BLEND_WEIGHT, Semantic.BLEND_INDICES})


@dataclass
class DecodedChannel:
    """One decoded vertex channel."""
    semantic: Semantic
    format: VertexFormat
    dimension: int
    data: np.ndarray

    @property
    def is_integer(self) -> bool:
        return self.format in INTEGER_FORMATS


def decode_components(data: np.ndarray, fmt: VertexFormat) -> np.ndarray:
    """Decode tightly packed components of one format.

    Float and normalized formats give float32 arrays, integer formats give
    int64 arrays.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        values = np.frombuffer(data, dtype=_DTYPES[fmt])
    else:
        values = np.ascontiguousarray(data, dtype=np.uint8).view(_DTYPES[fmt])

    if fmt is VertexFormat.FLOAT32 or fmt is VertexFormat.FLOAT16:
        return values.astype(np.float32)
    if fmt is VertexFormat.UNORM8:
        return (values / np.float32(255.0)).astype(np.float32)
    if fmt is VertexFormat.SNORM8:
        return np.maximum(values / np.float32(127.0), -1.0).astype(np.float32)
    if fmt is VertexFormat.UNORM16:
        return (values / np.float32(65535.0)).astype(np.float32)
    if fmt is VertexFormat.SNORM16:
        return np.maximum(values / np.float32(32767.0), -1.0).astype(np.float32)
    return values.astype(np.int64)


def _gather(buf: np.ndarray, start: int, stride: int, size: int, count: int) -> np.ndarray:
    """Copy ``size`` bytes at ``start + i * stride`` for every vertex into one tight array."""
    end = start + (count - 1) * stride + size
    if start < 0 or end > len(buf):
        raise MalformedData(
            f"Vertex read past end of buffer: needs {end} bytes, buffer has {len(buf)}"
        )
    rows = start + np.arange(count, dtype=np.int64)[:, None] * stride + np.arange(size, dtype=np.int64)
    return buf[rows].reshape(-1)


def stream_strides(channels: Sequence[ChannelInfo], profile: VertexProfile) -> List[int]:
    """Per-vertex stride of every stream referenced by a used channel."""
    used = [ch for ch in channels if ch.components > 0]
    if not used:
        return []
    strides = [0] * (max(ch.stream for ch in used) + 1)
    for ch in used:
        size = format_size(profile.resolve_format(ch.format))
        strides[ch.stream] = max(strides[ch.stream], ch.offset + ch.components * size)
    return strides


def decode_vertex_streams(raw: bytes, channels: Sequence[ChannelInfo], vertex_count: int,
                          profile: VertexProfile) -> Dict[Semantic, DecodedChannel]:
    """Decode a packed vertex buffer into per-semantic channels.

    Args:
        raw: Vertex buffer bytes
        channels: Channel table, indexed by channel slot
        vertex_count: Number of vertices in the buffer
        profile: Format and channel tables for the engine version

    Returns:
        Decoded channels keyed by semantic. Blend weight/index channels and
        channel slots the profile does not map are left out.

    Raises:
        UnsupportedFormat: A used channel has an unknown format code
        MalformedData: The buffer is shorter than the channel table implies
    """
    for ch in channels:
        if ch.components > 0 and (ch.stream < 0 or ch.offset < 0):
            raise MalformedData(f"Negative stream or offset in channel {ch}")

    # Resolving every format first makes an unknown code fail the whole mesh
    strides = stream_strides(channels, profile)
    if vertex_count <= 0 or not strides:
        return {}

    bases = []
    position = 0
    for stride in strides:
        bases.append(position)
        position += stride * vertex_count

    buf = np.frombuffer(raw, dtype=np.uint8)
    decoded: Dict[Semantic, DecodedChannel] = {}

    for index, ch in enumerate(channels):
        if ch.components == 0:
            continue
        semantic = profile.semantic(index)
        if semantic is None or semantic in _IGNORED_SEMANTICS:
            continue

        fmt = profile.resolve_format(ch.format)
        size = format_size(fmt) * ch.components
        data = _gather(buf, bases[ch.stream] + ch.offset, strides[ch.stream], size, vertex_count)
        decoded[semantic] = DecodedChannel(semantic, fmt, ch.components, decode_components(data, fmt))

    return decoded


def decode_index_buffer(data: bytes) -> np.ndarray:
    """Parse a little-endian 16-bit index buffer."""
    if len(data) % INDEX_SIZE:
        raise MalformedData(f"Index buffer length {len(data)} is not a multiple of {INDEX_SIZE}")
    return np.frombuffer(data, dtype="<u2").astype(np.uint32)


def _float_channel(decoded: Dict[Semantic, DecodedChannel], semantic: Semantic):
    channel = decoded.get(semantic)
    if channel is None:
        return None
    if channel.is_integer:
        log.debug("Ignoring integer %s channel (%s)", semantic.value, channel.format.value)
        return None
    return channel.data


def decode_mesh(record: MeshRecord, source, profile: VertexProfile) -> Mesh:
    """Decode a mesh record into a Mesh.

    Vertex bytes come from the record itself or, when the mesh streams its
    vertex data from an external resource, from ``source.get_vertex_bytes``.
    """
    vertex_data = record.vertex_data
    raw = vertex_data.data
    if record.stream_data is not None and record.stream_data.is_external:
        raw = source.get_vertex_bytes(record.stream_data)

    vertex_count = vertex_data.vertex_count
    if vertex_count < 0:
        raise MalformedData(f"Negative vertex count {vertex_count} in mesh '{record.name}'")

    decoded = decode_vertex_streams(raw, vertex_data.channels, vertex_count, profile)
    indices = decode_index_buffer(record.index_buffer)

    submeshes = [
        Submesh(s.first_byte, s.index_count, s.first_vertex, s.vertex_count, s.topology)
        for s in record.submeshes
    ]
    for submesh in submeshes:
        if submesh.first_byte < 0 or submesh.index_count < 0 or submesh.index_end > len(indices):
            raise MalformedData(
                f"Submesh indices [{submesh.index_start}, {submesh.index_end}) exceed "
                f"index buffer of {len(indices)} in mesh '{record.name}'"
            )

    if submeshes:
        # Anything past the last submesh is alignment padding
        indices = indices[: max(s.index_end for s in submeshes)]

    if len(indices) % 3:
        raise MalformedData(f"Index count {len(indices)} is not a triangle list in mesh '{record.name}'")
    if len(indices) and int(indices.max()) >= vertex_count:
        raise MalformedData(
            f"Index {int(indices.max())} out of range for {vertex_count} vertices in mesh '{record.name}'"
        )

    uvs = [None] * MAX_UV_CHANNELS
    for semantic in decoded:
        uv_index = semantic.uv_index
        if uv_index is not None:
            uvs[uv_index] = _float_channel(decoded, semantic)

    return Mesh(
        vertex_count=vertex_count,
        indices=indices,
        positions=_float_channel(decoded, Semantic.VERTEX),
        normals=_float_channel(decoded, Semantic.NORMAL),
        tangents=_float_channel(decoded, Semantic.TANGENT),
        colors=_float_channel(decoded, Semantic.COLOR),
        uvs=uvs,
        submeshes=submeshes,
        name=record.name,
    )
