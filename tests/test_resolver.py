import numpy as np
import pytest

from unityscene import IOFailure, LoadOptions, MeshSource, TextureImage, load_scene, resolve_texture
from unityscene.mesh import MeshCache
from unityscene.records import MaterialRecord, MeshFilterRecord, MeshRendererRecord, PPtr
from unityscene.resolver import LoadStats, MeshCandidates, MeshSourceResolver, select_texture
from unityscene.scene import SceneNode

from tests.conftest import QUAD, QUAD_INDICES, TRIANGLE, mesh_tree

TWO_QUADS = QUAD + [(5, 0, 0), (6, 0, 0), (6, 1, 0), (5, 1, 0)]
TWO_QUAD_INDICES = QUAD_INDICES + [4, 5, 6, 4, 6, 7]


def broken(tree):
    """Give the position channel an unknown format code."""
    tree["m_VertexData"]["m_Channels"]["Array"][0]["format"] = 99
    return tree


# =============================================================================
# TIER POLICY
# =============================================================================

def test_skinned_beats_filter(scene):
    node = scene.node("Character")
    scene.mesh_filter(node, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2])))
    scene.skinned_renderer(node, scene.mesh(mesh_tree(QUAD, QUAD_INDICES)))

    result = load_scene(scene.source).by_id[node]

    assert result.mesh_source is MeshSource.SKINNED
    assert result.is_skinned
    assert result.mesh.vertex_count == 4


def test_failed_skinned_falls_back_to_filter(scene):
    node = scene.node("Character")
    scene.mesh_filter(node, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2])))
    scene.skinned_renderer(node, scene.mesh(broken(mesh_tree(QUAD, QUAD_INDICES))))

    graph = load_scene(scene.source)
    result = graph.by_id[node]

    assert result.mesh_source is MeshSource.FILTER
    assert result.mesh.vertex_count == 3
    assert not result.is_skinned
    assert graph.stats.decode_errors == 1


def test_collider_beats_filter(scene):
    node = scene.node("Wall")
    scene.mesh_filter(node, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2])))
    scene.mesh_collider(node, scene.mesh(mesh_tree(QUAD, QUAD_INDICES)))

    result = load_scene(scene.source).by_id[node]
    assert result.mesh_source is MeshSource.COLLIDER
    assert result.mesh.vertex_count == 4


def test_dangling_mesh_reference(scene):
    node = scene.node("Ghost")
    scene.mesh_filter(node, 9999)

    graph = load_scene(scene.source)

    assert graph.by_id[node].mesh is None
    assert graph.stats.unresolved_refs == 1
    assert graph.stats.decode_errors == 0


def test_uvs_are_captured(scene):
    node = scene.node("Floor")
    uv0 = [(0, 0), (1, 0), (0, 1)]
    uv1 = [(0.5, 0.5), (1, 0.5), (0.5, 1)]
    scene.mesh_filter(node, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2], uv0=uv0, uv1=uv1)))

    result = load_scene(scene.source).by_id[node]
    assert result.uvs.tolist() == [0, 0, 1, 0, 0, 1]
    assert result.lightmap_uvs.tolist() == [0.5, 0.5, 1, 0.5, 0.5, 1]


def test_root_bone_binding(scene):
    root = scene.node("Rig")
    bone = scene.node("Hips", parent=root, position=(3, 0, 0))
    body = scene.node("Body", parent=root)
    scene.skinned_renderer(body, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2])), root_bone=bone)

    graph = load_scene(scene.source)
    node = graph.by_id[body]

    assert node.root_bone is graph.by_id[bone]
    np.testing.assert_allclose(node.world_matrix, graph.by_id[bone].world_matrix)
    assert node.bounds.min.tolist() == [3, 0, 0]


# =============================================================================
# STATIC BATCHING
# =============================================================================

def batched_scene(scene, combined_tree):
    combined = scene.mesh(combined_tree)
    nodes = []
    for i, name in enumerate(("Left", "Right")):
        node = scene.node(name)
        scene.mesh_filter(node, combined)
        scene.mesh_renderer(node, first_submesh=i, submesh_count=1)
        nodes.append(node)
    return nodes


def test_batched_members(scene):
    left, right = batched_scene(
        scene, mesh_tree(TWO_QUADS, TWO_QUAD_INDICES, submeshes=[(0, 6), (6, 6)]))

    graph = load_scene(scene.source)

    for node_id in (left, right):
        node = graph.by_id[node_id]
        assert node.mesh_source is MeshSource.BATCHED
        assert node.mesh.vertex_count == 4
        assert node.mesh.indices.tolist() == [0, 1, 2, 0, 2, 3]
        assert node.batch_root is node
    assert graph.by_id[right].mesh.position_array()[0].tolist() == [5, 0, 0]
    assert graph.stats.batched_meshes == 2


def test_broken_combined_mesh_skips_filter(scene):
    left, right = batched_scene(
        scene, broken(mesh_tree(TWO_QUADS, TWO_QUAD_INDICES, submeshes=[(0, 6), (6, 6)])))

    graph = load_scene(scene.source)

    assert graph.by_id[left].mesh is None
    assert graph.by_id[right].mesh is None
    assert graph.stats.meshes_loaded == 0


def test_combined_mesh_decoded_once(scene, profile):
    left, right = batched_scene(
        scene, mesh_tree(TWO_QUADS, TWO_QUAD_INDICES, submeshes=[(0, 6), (6, 6)]))
    source = scene.source
    filters = {MeshFilterRecord.from_tree(source.get_field(0, p)).game_object.path_id:
               MeshFilterRecord.from_tree(source.get_field(0, p))
               for p in source.objects_of_type("MeshFilter")}
    renderers = {MeshRendererRecord.from_tree(source.get_field(0, p)).game_object.path_id:
                 MeshRendererRecord.from_tree(source.get_field(0, p))
                 for p in source.objects_of_type("MeshRenderer")}

    cache = MeshCache()
    resolver = MeshSourceResolver(source, profile, {}, cache, LoadStats())
    for node_id in (left, right):
        go = scene.game_objects[node_id]
        result = resolver.resolve(SceneNode(node_id, "n"), MeshCandidates(renderer=renderers[go], filter=filters[go]))
        assert result.source is MeshSource.BATCHED

    assert cache.decodes == 1
    assert len(cache) == 1


def test_unresolvable_version_decodes_nothing(scene):
    node = scene.node("Floor")
    scene.mesh_filter(node, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2])))
    scene.source._version = "unknown"

    graph = load_scene(scene.source)
    assert graph.by_id[node].mesh is None
    assert graph.stats.decode_errors == 1
    assert graph.version is None

    graph = load_scene(scene.source, LoadOptions(version="2019.4.31f1"))
    assert graph.by_id[node].mesh is not None


# =============================================================================
# TEXTURES
# =============================================================================

def material(*tex_envs):
    return MaterialRecord.from_tree({"m_SavedProperties": {"m_TexEnvs": [
        {"first": name, "second": {"m_Texture": {"m_FileID": 0, "m_PathID": texture}}}
        for name, texture in tex_envs
    ]}})


def test_select_texture_prefers_known_slots():
    assert select_texture(material(("_BumpMap", 5), ("_MainTex", 6))).path_id == 6
    assert select_texture(material(("_BaseMap", 7), ("_MainTex", 6))).path_id == 7


def test_select_texture_skips_null_slots():
    assert select_texture(material(("_MainTex", 0), ("_BumpMap", 5))).path_id == 5
    assert select_texture(material(("_MainTex", 0))) is None


def test_select_texture_is_case_sensitive():
    assert select_texture(material(("_maintex", 3), ("_Color", 4))).path_id == 4


def texture_decoder(texture_id):
    def decode(file_id, path_id):
        if path_id == texture_id:
            return TextureImage(b"\x00" * 16, 2, 2)
        return None
    return decode


def test_resolve_texture(scene):
    mat = scene.material([("_MainTex", 500)])
    scene.source.texture_decoder = texture_decoder(500)

    image = resolve_texture(scene.source, PPtr(0, mat))
    assert (image.width, image.height) == (2, 2)
    assert resolve_texture(scene.source, PPtr(0, 0)) is None


def test_empty_texture_is_absent(scene):
    mat = scene.material([("_MainTex", 500)])
    scene.source.texture_decoder = lambda file_id, path_id: TextureImage(b"", 0, 0)
    assert resolve_texture(scene.source, PPtr(0, mat)) is None


def test_node_texture_from_renderer(scene):
    node = scene.node("Crate")
    scene.mesh_filter(node, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2])))
    scene.mesh_renderer(node, materials=[scene.material([("_MainTex", 500)])])
    scene.source.texture_decoder = texture_decoder(500)

    graph = load_scene(scene.source)
    assert graph.by_id[node].texture.width == 2
    assert graph.stats.textures_loaded == 1

    graph = load_scene(scene.source, LoadOptions(load_textures=False))
    assert graph.by_id[node].texture is None


def test_node_texture_from_skinned_material(scene):
    node = scene.node("Hero")
    scene.mesh_renderer(node, materials=[scene.material([("_MainTex", 500)])])
    scene.skinned_renderer(node, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2])),
                           materials=[scene.material([("_MainTex", 600)])])
    scene.source.texture_decoder = texture_decoder(600)

    assert load_scene(scene.source).by_id[node].texture is not None


def test_missing_material_counts_texture_error(scene):
    node = scene.node("Crate")
    scene.mesh_renderer(node, materials=[4242])

    graph = load_scene(scene.source)
    assert graph.by_id[node].texture is None
    assert graph.stats.texture_errors == 1


def test_texture_pixels_as_array(scene):
    mat = scene.material([("_MainTex", 500)])
    scene.source.texture_decoder = lambda file_id, path_id: TextureImage(np.zeros(16, dtype=np.uint8), 2, 2)
    assert resolve_texture(scene.source, PPtr(0, mat)).width == 2

    scene.source.texture_decoder = lambda file_id, path_id: TextureImage(np.zeros(0, dtype=np.uint8), 2, 2)
    assert resolve_texture(scene.source, PPtr(0, mat)) is None


def test_host_texture_failure_is_isolated(scene):
    node = scene.node("Crate")
    scene.mesh_filter(node, scene.mesh(mesh_tree(TRIANGLE, [0, 1, 2])))
    scene.mesh_renderer(node, materials=[scene.material([("_MainTex", 500)])])

    def explode(file_id, path_id):
        raise RuntimeError("unsupported texture format")

    scene.source.texture_decoder = explode

    with pytest.raises(IOFailure):
        resolve_texture(scene.source, PPtr(0, scene.material([("_MainTex", 500)])))

    graph = load_scene(scene.source)
    assert graph.by_id[node].texture is None
    assert graph.by_id[node].mesh is not None
    assert graph.stats.texture_errors == 1
