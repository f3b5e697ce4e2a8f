"""
Per-node mesh source resolution.

A scene node can reach geometry through several components. The first
applicable source wins:

  1. batched   - the renderer was merged into a static batch at build time;
                 its submesh range is cut out of the shared combined mesh
  2. skinned   - SkinnedMeshRenderer mesh, bound to its root bone
  3. collider  - MeshCollider mesh (often without normals or UVs)
  4. filter    - MeshFilter mesh, unless the node is a batch member

A failure in one source is logged and counted, and resolution moves on to
the next one.
"""

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

from .decoder import decode_mesh
from .errors import IOFailure, SceneError, UnresolvedReference, UnsupportedFormat
from .formats import VertexProfile
from .mesh import Mesh, MeshCache, extract_submeshes
from .records import (
    MaterialRecord,
    MeshColliderRecord,
    MeshFilterRecord,
    MeshRecord,
    MeshRendererRecord,
    PPtr,
    SkinnedMeshRendererRecord,
)
from .source import AssetSource, TextureImage

log = logging.getLogger(__name__)

# Material texture slots holding the base color, checked case-sensitively
TEXTURE_SLOT_NAMES = (
    "_MainTex",
    "_BaseMap",
    "_Albedo",
    "_BaseColorMap",
    "_Diffuse",
    "_DiffuseMap",
    "_BaseColor",
    "_Color",
    "_AlbedoMap",
    "_MainTexture",
    "_Texture",
)


class MeshSource(Enum):
    BATCHED = "batched"
    SKINNED = "skinned"
    COLLIDER = "collider"
    FILTER = "filter"


@dataclass
class MeshCandidates:
    """Components attached to one node's game object."""
    renderer: Optional[MeshRendererRecord] = None
    filter: Optional[MeshFilterRecord] = None
    collider: Optional[MeshColliderRecord] = None
    skinned: Optional[SkinnedMeshRendererRecord] = None

    @property
    def is_batch_member(self) -> bool:
        return self.renderer is not None and self.renderer.is_batched


@dataclass
class Resolution:
    mesh: Optional[Mesh] = None
    source: Optional[MeshSource] = None
    root_bone: Any = None
    batch_root: Any = None
    uvs: Optional[np.ndarray] = None
    lightmap_uvs: Optional[np.ndarray] = None
    failures: int = 0


@dataclass
class LoadStats:
    """Counters reported at the end of a scene load."""
    objects: int = 0
    roots: int = 0
    skipped_records: int = 0
    meshes_loaded: int = 0
    batched_meshes: int = 0
    skinned_meshes: int = 0
    collider_meshes: int = 0
    filter_meshes: int = 0
    decode_errors: int = 0
    unresolved_refs: int = 0
    textures_loaded: int = 0
    texture_errors: int = 0

    def count_mesh(self, source: MeshSource):
        self.meshes_loaded += 1
        name = f"{source.value}_meshes"
        setattr(self, name, getattr(self, name) + 1)

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def summary(self) -> str:
        return (
            f"Loaded {self.meshes_loaded} meshes ({self.batched_meshes} batched, "
            f"{self.skinned_meshes} skinned, {self.collider_meshes} from MeshColliders, "
            f"{self.filter_meshes} from MeshFilters, {self.decode_errors} errors)"
        )


def select_texture(material: MaterialRecord) -> Optional[PPtr]:
    """Pick the base color texture of a material.

    The first texture slot (in material order) named in TEXTURE_SLOT_NAMES
    wins; failing that, the first slot with any texture.
    """
    for env in material.tex_envs:
        if env.name in TEXTURE_SLOT_NAMES and not env.texture.is_null:
            return env.texture
    for env in material.tex_envs:
        if not env.texture.is_null:
            return env.texture
    return None


def resolve_texture(source: AssetSource, material_ref: PPtr) -> Optional[TextureImage]:
    """Decoded base color texture of a material, or None.

    Raises:
        UnresolvedReference: The material pointer does not resolve
        IOFailure: The host failed to decode the texture
        MissingField: The material record is incomplete
    """
    if material_ref.is_null:
        return None
    tree = source.get_field(material_ref.file_id, material_ref.path_id)
    if tree is None:
        raise UnresolvedReference(material_ref.file_id, material_ref.path_id, "material")

    texture_ref = select_texture(MaterialRecord.from_tree(tree))
    if texture_ref is None:
        return None

    try:
        image = source.decode_texture(texture_ref.file_id, texture_ref.path_id)
    except SceneError:
        raise
    except Exception as e:
        raise IOFailure(f"Texture {texture_ref.path_id} could not be decoded: {e}") from e
    if image is None or image.width <= 0 or image.height <= 0 or len(image.pixels_bgra) == 0:
        return None
    return image


class MeshSourceResolver:
    """Chooses and loads the mesh for each scene node of one load.

    Args:
        source: Host asset source
        profile: Vertex tables for the file's engine version, or None when
            the version could not be resolved (every decode then fails)
        nodes_by_id: Already built scene nodes keyed by transform path id
        cache: Per-load combined mesh cache
        stats: Counters to update
    """

    def __init__(self, source: AssetSource, profile: Optional[VertexProfile],
                 nodes_by_id: Dict[int, Any], cache: MeshCache, stats: LoadStats,
                 version_error: Optional[UnsupportedFormat] = None):
        self.source = source
        self.profile = profile
        self.nodes_by_id = nodes_by_id
        self.cache = cache
        self.stats = stats
        self.version_error = version_error

    def resolve(self, node, candidates: MeshCandidates) -> Resolution:
        result = Resolution()

        mesh = (
            self._try_batched(node, candidates, result)
            or self._try_skinned(node, candidates, result)
            or self._try_collider(node, candidates, result)
            or self._try_filter(node, candidates, result)
        )

        if mesh is not None:
            result.mesh = mesh
            result.uvs = mesh.uv(0)
            result.lightmap_uvs = mesh.uv(1)
            self.stats.count_mesh(result.source)
        return result

    # -------------------------------------------------------------------------
    # Tiers
    # -------------------------------------------------------------------------

    def _try_batched(self, node, candidates: MeshCandidates, result: Resolution) -> Optional[Mesh]:
        renderer = candidates.renderer
        mf = candidates.filter
        if renderer is None or not renderer.is_batched:
            return None
        if mf is None or mf.mesh.is_null:
            log.debug("Batched renderer on '%s' has no combined mesh reference", node.name)
            return None

        info = renderer.static_batch_info
        batch_root = self.nodes_by_id.get(renderer.static_batch_root.path_id, node)

        def load() -> Mesh:
            combined = self.cache.get_or_decode(mf.mesh.key, lambda: self._load_mesh(mf.mesh))
            return extract_submeshes(combined, info.first_submesh, info.submesh_count)

        mesh = self._attempt(node, MeshSource.BATCHED, load, result)
        if mesh is not None:
            result.source = MeshSource.BATCHED
            result.batch_root = batch_root
        return mesh

    def _try_skinned(self, node, candidates: MeshCandidates, result: Resolution) -> Optional[Mesh]:
        smr = candidates.skinned
        if smr is None or smr.mesh.is_null:
            return None

        mesh = self._attempt(node, MeshSource.SKINNED, lambda: self._load_mesh(smr.mesh), result)
        if mesh is None:
            return None

        result.source = MeshSource.SKINNED
        if not smr.root_bone.is_null:
            bone = self.nodes_by_id.get(smr.root_bone.path_id)
            if bone is not None:
                result.root_bone = bone
                log.debug("SkinnedMesh '%s' uses root bone '%s'", node.name, bone.name)
            else:
                log.debug("SkinnedMesh '%s' root bone %d is not in the scene",
                          node.name, smr.root_bone.path_id)
        return mesh

    def _try_collider(self, node, candidates: MeshCandidates, result: Resolution) -> Optional[Mesh]:
        mc = candidates.collider
        if mc is None or mc.mesh.is_null:
            return None
        mesh = self._attempt(node, MeshSource.COLLIDER, lambda: self._load_mesh(mc.mesh), result)
        if mesh is not None:
            result.source = MeshSource.COLLIDER
        return mesh

    def _try_filter(self, node, candidates: MeshCandidates, result: Resolution) -> Optional[Mesh]:
        mf = candidates.filter
        if mf is None or mf.mesh.is_null:
            return None
        if candidates.is_batch_member:
            # The filter points at the whole combined mesh of the batch
            log.debug("Skipping MeshFilter of batch member '%s'", node.name)
            return None
        mesh = self._attempt(node, MeshSource.FILTER, lambda: self._load_mesh(mf.mesh), result)
        if mesh is not None:
            result.source = MeshSource.FILTER
        return mesh

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _attempt(self, node, tier: MeshSource, load, result: Resolution) -> Optional[Mesh]:
        try:
            return load()
        except UnresolvedReference as e:
            self.stats.unresolved_refs += 1
            log.warning("%s mesh for '%s' unavailable: %s", tier.value, node.name, e)
        except SceneError as e:
            self.stats.decode_errors += 1
            result.failures += 1
            log.warning("%s mesh load failed for '%s': %s", tier.value, node.name, e)
        return None

    def _load_mesh(self, ref: PPtr) -> Mesh:
        if self.profile is None:
            raise self.version_error or UnsupportedFormat("No vertex profile for this file")
        tree = self.source.get_field(ref.file_id, ref.path_id)
        if tree is None:
            raise UnresolvedReference(ref.file_id, ref.path_id, "mesh")
        return decode_mesh(MeshRecord.from_tree(tree), self.source, self.profile)

    def resolve_texture(self, node, candidates: MeshCandidates, resolution: Resolution) -> Optional[TextureImage]:
        """Base color texture for a node from its renderer's first material."""
        if resolution.source is MeshSource.SKINNED:
            materials = candidates.skinned.materials
        elif candidates.renderer is not None:
            materials = candidates.renderer.materials
        else:
            return None
        if not materials or materials[0].is_null:
            return None

        try:
            image = resolve_texture(self.source, materials[0])
        except SceneError as e:
            self.stats.texture_errors += 1
            log.warning("Texture load failed for '%s': %s", node.name, e)
            return None

        if image is not None:
            self.stats.textures_loaded += 1
        return image
