"""
Unity Scene Extraction

Rebuilds renderable geometry from a Unity serialized scene: vertex stream
decoding, static batch reconstruction, per-node mesh source resolution and
the transform hierarchy.
"""

from .errors import (
    SceneError,
    MissingField,
    UnresolvedReference,
    UnsupportedFormat,
    IOFailure,
    MalformedData,
    LoadCancelled,
)
from .formats import VertexFormat, Semantic, FormatEpoch, UnityVersion, VertexProfile, resolve_profile
from .mesh import Mesh, Submesh, MeshCache, extract_submeshes
from .decoder import decode_vertex_streams, decode_index_buffer, decode_mesh
from .resolver import LoadStats, MeshSource, MeshSourceResolver, TEXTURE_SLOT_NAMES, resolve_texture
from .source import AssetSource, MemoryAssetSource, ResourceResolver, TextureImage
from .scene import CancellationToken, LoadOptions, SceneGraph, SceneNode, load_scene
from .types import Vector, Quaternion, Bounds

__all__ = [
    'SceneError',
    'MissingField',
    'UnresolvedReference',
    'UnsupportedFormat',
    'IOFailure',
    'MalformedData',
    'LoadCancelled',
    'VertexFormat',
    'Semantic',
    'FormatEpoch',
    'UnityVersion',
    'VertexProfile',
    'resolve_profile',
    'Mesh',
    'Submesh',
    'MeshCache',
    'extract_submeshes',
    'decode_vertex_streams',
    'decode_index_buffer',
    'decode_mesh',
    'LoadStats',
    'MeshSource',
    'MeshSourceResolver',
    'TEXTURE_SLOT_NAMES',
    'resolve_texture',
    'AssetSource',
    'MemoryAssetSource',
    'ResourceResolver',
    'TextureImage',
    'CancellationToken',
    'LoadOptions',
    'SceneGraph',
    'SceneNode',
    'load_scene',
    'Vector',
    'Quaternion',
    'Bounds',
]
