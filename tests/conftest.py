import pytest
from construct import Array, Float32l, Int16ul, Struct

from unityscene import MemoryAssetSource, resolve_profile

# 2018+ channel slots
VERTEX, NORMAL, TANGENT, COLOR, UV0, UV1 = 0, 1, 2, 3, 4, 5
CHANNEL_SLOTS = 14

FLOAT = 0


def ptr(path_id, file_id=0):
    return {"m_FileID": file_id, "m_PathID": path_id}


def channel(stream=0, offset=0, fmt=0, dimension=0):
    return {"stream": stream, "offset": offset, "format": fmt, "dimension": dimension}


def index_bytes(indices):
    return Array(len(indices), Int16ul).build(list(indices))


def pack_float_vertices(attributes, vertex_count):
    """Interleave float32 attributes into one stream.

    attributes: list of (slot, dimension, rows). Returns (bytes, channels).
    """
    channels = [channel() for _ in range(CHANNEL_SLOTS)]
    layout = []
    offset = 0
    for slot, dim, _ in attributes:
        channels[slot] = channel(0, offset, FLOAT, dim)
        layout.append(f"c{slot}" / Array(dim, Float32l))
        offset += dim * Float32l.sizeof()

    if not layout or vertex_count == 0:
        return b"", channels

    vertex = Struct(*layout)
    rows = [
        {f"c{slot}": [float(v) for v in values[i]] for slot, _, values in attributes}
        for i in range(vertex_count)
    ]
    return Array(vertex_count, vertex).build(rows), channels


def mesh_tree(positions, indices, normals=None, uv0=None, uv1=None,
              submeshes=None, name="mesh"):
    """Mesh object tree with float32 attributes in a single stream.

    submeshes: list of (first_index, index_count); defaults to one submesh
    covering every index.
    """
    vertex_count = len(positions)
    attributes = [(VERTEX, 3, positions)]
    if normals is not None:
        attributes.append((NORMAL, 3, normals))
    if uv0 is not None:
        attributes.append((UV0, 2, uv0))
    if uv1 is not None:
        attributes.append((UV1, 2, uv1))
    data, channels = pack_float_vertices(attributes, vertex_count)

    if submeshes is None:
        submeshes = [(0, len(indices))] if len(indices) else []

    return {
        "m_Name": name,
        "m_IndexBuffer": index_bytes(indices),
        "m_SubMeshes": {"Array": [
            {"firstByte": first * 2, "indexCount": count, "topology": 0,
             "firstVertex": 0, "vertexCount": vertex_count}
            for first, count in submeshes
        ]},
        "m_VertexData": {
            "m_VertexCount": vertex_count,
            "m_Channels": {"Array": channels},
            "m_DataSize": data,
        },
        "m_StreamData": {"offset": 0, "size": 0, "path": ""},
    }


TRIANGLE = [(0, 0, 0), (1, 0, 0), (0, 1, 0)]
QUAD = [(0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0)]
QUAD_INDICES = [0, 1, 2, 0, 2, 3]
TETRA = [(0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1)]
TETRA_INDICES = [0, 1, 2, 0, 1, 3]


class SceneBuilder:
    """Builds an in-memory scene one GameObject at a time."""

    def __init__(self, version="2019.4.31f1"):
        self.source = MemoryAssetSource(version)
        self.game_objects = {}
        self._next_id = 100

    def _new_id(self):
        self._next_id += 1
        return self._next_id

    def add(self, class_name, tree):
        path_id = self._new_id()
        self.source.add(class_name, path_id, tree)
        return path_id

    def node(self, name, parent=0, position=(0, 0, 0), rotation=(0, 0, 0, 1),
             scale=(1, 1, 1), class_name="Transform"):
        go_id = self.add("GameObject", {"m_Name": name, "m_IsActive": True})
        x, y, z, w = rotation
        tf_id = self.add(class_name, {
            "m_GameObject": ptr(go_id),
            "m_LocalPosition": dict(zip("xyz", position)),
            "m_LocalRotation": {"x": x, "y": y, "z": z, "w": w},
            "m_LocalScale": dict(zip("xyz", scale)),
            "m_Father": ptr(parent),
            "m_Children": {"Array": []},
        })
        self.game_objects[tf_id] = go_id
        return tf_id

    def mesh(self, tree):
        return self.add("Mesh", tree)

    def mesh_filter(self, node, mesh_id):
        return self.add("MeshFilter", {
            "m_GameObject": ptr(self.game_objects[node]),
            "m_Mesh": ptr(mesh_id),
        })

    def mesh_collider(self, node, mesh_id):
        return self.add("MeshCollider", {
            "m_GameObject": ptr(self.game_objects[node]),
            "m_Mesh": ptr(mesh_id),
        })

    def mesh_renderer(self, node, materials=(), first_submesh=0, submesh_count=0, batch_root=0):
        return self.add("MeshRenderer", {
            "m_GameObject": ptr(self.game_objects[node]),
            "m_Materials": {"Array": [ptr(m) for m in materials]},
            "m_StaticBatchInfo": {"firstSubMesh": first_submesh, "subMeshCount": submesh_count},
            "m_StaticBatchRoot": ptr(batch_root),
        })

    def skinned_renderer(self, node, mesh_id, root_bone=0, materials=()):
        return self.add("SkinnedMeshRenderer", {
            "m_GameObject": ptr(self.game_objects[node]),
            "m_Mesh": ptr(mesh_id),
            "m_RootBone": ptr(root_bone),
            "m_Materials": {"Array": [ptr(m) for m in materials]},
            "m_Bones": {"Array": []},
        })

    def material(self, tex_envs, name="material"):
        return self.add("Material", {
            "m_Name": name,
            "m_SavedProperties": {"m_TexEnvs": {"Array": [
                {"first": slot, "second": {"m_Texture": ptr(texture)}}
                for slot, texture in tex_envs
            ]}},
        })


@pytest.fixture
def profile():
    """Vertex profile for a 2019 engine version."""
    return resolve_profile("2019.4.31f1")


@pytest.fixture
def scene():
    """Returns a fresh SceneBuilder for each test."""
    return SceneBuilder()
