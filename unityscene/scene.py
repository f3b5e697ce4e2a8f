"""
Scene graph construction and the scene loader.

``load_scene`` turns one serialized scene file into a forest of
``SceneNode`` objects:

  1. read every Transform/RectTransform and its GameObject name
  2. link nodes to their parents (unknown parents make roots)
  3. index MeshFilter/MeshRenderer/MeshCollider/SkinnedMeshRenderer
     components by GameObject
  4. resolve each node's mesh and texture
  5. compose world matrices, move skinned nodes onto their root bone
  6. compute world-space bounds

Per-object failures never abort the load; they are logged and counted in
``LoadStats``.
"""

import logging
import threading
import weakref
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

import numpy as np

from .errors import LoadCancelled, SceneError, UnsupportedFormat
from .formats import UnityVersion, resolve_profile
from .mesh import Mesh, MeshCache
from .records import (
    GameObjectRecord,
    MeshColliderRecord,
    MeshFilterRecord,
    MeshRendererRecord,
    PPtr,
    SkinnedMeshRendererRecord,
    TransformRecord,
)
from .resolver import LoadStats, MeshCandidates, MeshSource, MeshSourceResolver, Resolution
from .source import AssetSource, TextureImage
from .types import Bounds, Quaternion, Vector, transform_points, trs_matrix

log = logging.getLogger(__name__)

UNKNOWN_NAME = "[Unknown]"

TRANSFORM_CLASSES = ("Transform", "RectTransform")

# Component class -> (record type, MeshCandidates attribute)
COMPONENT_CLASSES = {
    "MeshFilter": (MeshFilterRecord, "filter"),
    "MeshRenderer": (MeshRendererRecord, "renderer"),
    "MeshCollider": (MeshColliderRecord, "collider"),
    "SkinnedMeshRenderer": (SkinnedMeshRendererRecord, "skinned"),
}


class CancellationToken:
    """Thread-safe cancel flag for a running scene load."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise LoadCancelled("Scene load cancelled")


@dataclass
class LoadOptions:
    """Scene load settings.

    Attributes:
        version: Engine version to decode with instead of the file's own
        load_textures: Resolve and decode each node's base color texture
    """
    version: Optional[str] = None
    load_textures: bool = True


# =============================================================================
# NODES
# =============================================================================

class SceneNode:
    """One Transform in the scene hierarchy and whatever it displays."""

    def __init__(self, path_id: int, name: str,
                 local_position: Optional[Vector] = None,
                 local_rotation: Optional[Quaternion] = None,
                 local_scale: Optional[Vector] = None,
                 game_object_id: int = 0,
                 is_active: bool = True):
        self.path_id = path_id
        self.name = name
        self.game_object_id = game_object_id
        self.is_active = is_active

        self.local_position = local_position or Vector()
        self.local_rotation = local_rotation or Quaternion()
        self.local_scale = local_scale or Vector(1.0, 1.0, 1.0)
        self.world_matrix = np.identity(4)

        self.mesh: Optional[Mesh] = None
        self.mesh_source: Optional[MeshSource] = None
        self.uvs: Optional[np.ndarray] = None
        self.lightmap_uvs: Optional[np.ndarray] = None
        self.root_bone: Optional["SceneNode"] = None
        self.batch_root: Optional["SceneNode"] = None
        self.texture: Optional[TextureImage] = None

        self.children: List["SceneNode"] = []
        self._parent = None
        self.bounds = Bounds()

    def __repr__(self):
        return f"SceneNode({self.path_id}, {self.name!r})"

    @property
    def parent(self) -> Optional["SceneNode"]:
        return self._parent() if self._parent is not None else None

    @parent.setter
    def parent(self, node: Optional["SceneNode"]):
        self._parent = weakref.ref(node) if node is not None else None

    @property
    def is_skinned(self) -> bool:
        return self.mesh_source is MeshSource.SKINNED

    @property
    def has_mesh(self) -> bool:
        return self.mesh is not None and self.mesh.vertex_count > 0

    @property
    def world_position(self) -> np.ndarray:
        return self.world_matrix[3, :3].copy()

    def local_matrix(self) -> np.ndarray:
        return trs_matrix(self.local_position, self.local_rotation, self.local_scale)

    def apply(self, resolution: Resolution):
        self.mesh = resolution.mesh
        self.mesh_source = resolution.source
        self.uvs = resolution.uvs
        self.lightmap_uvs = resolution.lightmap_uvs
        self.root_bone = resolution.root_bone
        self.batch_root = resolution.batch_root

    def walk(self) -> Iterator["SceneNode"]:
        """This node and its descendants, depth first."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def ray_intersects(self, origin, direction) -> Optional[float]:
        """Distance along the ray to this node's bounds, or None on a miss."""
        if not self.has_mesh:
            return None

        origin = np.asarray(origin, dtype=np.float64)
        direction = np.asarray(direction, dtype=np.float64)
        with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
            inv = np.where(direction != 0, 1.0 / direction, np.finfo(np.float32).max)
            t1 = (self.bounds.min - origin) * inv
            t2 = (self.bounds.max - origin) * inv

        tmin = float(np.minimum(t1, t2).max())
        tmax = float(np.maximum(t1, t2).min())
        if tmax < 0 or tmin > tmax:
            return None
        return tmin if tmin >= 0 else tmax


# =============================================================================
# HIERARCHY
# =============================================================================

def build_forest(nodes: Dict[int, SceneNode], parent_ids: Dict[int, int]) -> List[SceneNode]:
    """Link nodes to their parents and return the roots.

    A node is a root when its parent id is missing, 0, or names no node.
    Nodes that are still unreachable afterwards sit on a parent cycle; the
    first of them is detached from its parent and promoted to a root.
    """
    roots = []
    for path_id, node in nodes.items():
        parent = nodes.get(parent_ids.get(path_id, 0))
        if parent is None or parent is node:
            roots.append(node)
        else:
            node.parent = parent
            parent.children.append(node)

    reached = {n.path_id for root in roots for n in root.walk()}
    for path_id, node in nodes.items():
        if path_id in reached:
            continue
        log.warning("Transform %d ('%s') is on a parent cycle, promoting it to a root",
                    path_id, node.name)
        parent = node.parent
        if parent is not None:
            parent.children.remove(node)
            node.parent = None
        roots.append(node)
        reached.update(n.path_id for n in node.walk())

    return roots


def compute_world_matrices(roots: Iterable[SceneNode]):
    """world = local @ parent.world, parents before children."""
    stack = [(root, None) for root in reversed(list(roots))]
    while stack:
        node, parent_world = stack.pop()
        local = node.local_matrix()
        node.world_matrix = local if parent_world is None else local @ parent_world
        for child in reversed(node.children):
            stack.append((child, node.world_matrix))


def apply_bone_overrides(nodes: Iterable[SceneNode]):
    """Skinned vertices are bone-relative; place them with the root bone."""
    for node in nodes:
        if node.is_skinned and node.root_bone is not None:
            node.world_matrix = node.root_bone.world_matrix.copy()


def compute_bounds(node: SceneNode) -> Bounds:
    points = node.mesh.position_array() if node.mesh is not None else None
    if points is None or len(points) == 0:
        node.bounds = Bounds.at_point(node.world_matrix[3, :3])
    else:
        world = transform_points(points, node.world_matrix)
        node.bounds = Bounds(world.min(axis=0), world.max(axis=0))
    return node.bounds


@dataclass
class SceneGraph:
    """Result of one scene load."""
    nodes: List[SceneNode]
    roots: List[SceneNode]
    stats: LoadStats = field(default_factory=LoadStats)
    version: Optional[UnityVersion] = None

    def __post_init__(self):
        self.by_id: Dict[int, SceneNode] = {node.path_id: node for node in self.nodes}

    def __len__(self) -> int:
        return len(self.nodes)

    def walk(self) -> Iterator[SceneNode]:
        for root in self.roots:
            yield from root.walk()

    def find(self, name: str) -> Optional[SceneNode]:
        for node in self.walk():
            if node.name == name:
                return node
        return None

    def mesh_nodes(self) -> List[SceneNode]:
        return [node for node in self.nodes if node.has_mesh]

    def pick(self, origin, direction) -> Optional[SceneNode]:
        """Nearest node whose bounds the ray hits."""
        closest = None
        closest_dist = float("inf")
        for node in self.nodes:
            dist = node.ray_intersects(origin, direction)
            if dist is not None and dist < closest_dist:
                closest = node
                closest_dist = dist
        return closest


# =============================================================================
# LOADER
# =============================================================================

def _game_object(source: AssetSource, ref: PPtr) -> Optional[GameObjectRecord]:
    if ref.is_null:
        return None
    tree = source.get_field(ref.file_id, ref.path_id)
    if tree is None:
        return None
    try:
        return GameObjectRecord.from_tree(tree)
    except SceneError as e:
        log.debug("GameObject %d unreadable: %s", ref.path_id, e)
        return None


def _read_transforms(source: AssetSource, stats: LoadStats):
    nodes: Dict[int, SceneNode] = {}
    parent_ids: Dict[int, int] = {}

    for class_name in TRANSFORM_CLASSES:
        for path_id in source.objects_of_type(class_name):
            tree = source.get_field(0, path_id)
            if tree is None:
                stats.skipped_records += 1
                continue
            try:
                record = TransformRecord.from_tree(tree)
            except SceneError as e:
                stats.skipped_records += 1
                log.warning("Skipping %s %d: %s", class_name, path_id, e)
                continue

            go = _game_object(source, record.game_object)
            nodes[path_id] = SceneNode(
                path_id,
                go.name if go is not None else UNKNOWN_NAME,
                record.local_position,
                record.local_rotation,
                record.local_scale,
                game_object_id=record.game_object.path_id,
                is_active=go.is_active if go is not None else True,
            )
            parent_ids[path_id] = record.father.path_id

    return nodes, parent_ids


def _index_components(source: AssetSource, stats: LoadStats) -> Dict[int, MeshCandidates]:
    candidates: Dict[int, MeshCandidates] = {}
    counts = {}

    for class_name, (record_type, slot) in COMPONENT_CLASSES.items():
        counts[class_name] = 0
        for path_id in source.objects_of_type(class_name):
            tree = source.get_field(0, path_id)
            if tree is None:
                stats.skipped_records += 1
                continue
            try:
                record = record_type.from_tree(tree)
            except SceneError as e:
                stats.skipped_records += 1
                log.warning("Skipping %s %d: %s", class_name, path_id, e)
                continue
            counts[class_name] += 1
            if record.game_object.is_null:
                log.debug("%s %d is not attached to a GameObject", class_name, path_id)
                continue
            go_id = record.game_object.path_id
            setattr(candidates.setdefault(go_id, MeshCandidates()), slot, record)

    log.info("Found %d MeshFilters, %d MeshRenderers, %d MeshColliders, %d SkinnedMeshRenderers",
             counts["MeshFilter"], counts["MeshRenderer"], counts["MeshCollider"],
             counts["SkinnedMeshRenderer"])
    return candidates


def load_scene(source: AssetSource, options: Optional[LoadOptions] = None,
               cancel: Optional[CancellationToken] = None) -> SceneGraph:
    """Build the scene graph of one serialized scene file.

    Args:
        source: Host asset source for the file
        options: Load settings
        cancel: Checked before each node's mesh resolution

    Returns:
        SceneGraph with resolved meshes, world matrices and bounds

    Raises:
        ValueError: source is None
        LoadCancelled: The load was cancelled; no partial graph is returned
    """
    if source is None:
        raise ValueError("load_scene requires an asset source")
    options = options or LoadOptions()
    stats = LoadStats()

    version_text = options.version or source.unity_version
    profile = None
    version_error = None
    try:
        profile = resolve_profile(version_text)
        log.info("Loading scene: engine %s, %s vertex formats", profile.version, profile.epoch.value)
    except UnsupportedFormat as e:
        version_error = e
        log.warning("%s; meshes will not be decoded", e)

    nodes, parent_ids = _read_transforms(source, stats)
    roots = build_forest(nodes, parent_ids)
    stats.objects = len(nodes)
    stats.roots = len(roots)
    log.info("Built hierarchy: %d objects, %d root objects", stats.objects, stats.roots)

    candidates = _index_components(source, stats)
    cache = MeshCache()
    resolver = MeshSourceResolver(source, profile, nodes, cache, stats, version_error)

    for node in nodes.values():
        if cancel is not None:
            cancel.raise_if_cancelled()
        if node.game_object_id == 0:
            continue
        found = candidates.get(node.game_object_id)
        if found is None:
            continue
        resolution = resolver.resolve(node, found)
        node.apply(resolution)
        if options.load_textures:
            node.texture = resolver.resolve_texture(node, found, resolution)

    compute_world_matrices(roots)
    apply_bone_overrides(nodes.values())
    for node in nodes.values():
        compute_bounds(node)

    log.info(stats.summary())
    log.debug("Decoded %d combined batch meshes", cache.decodes)

    return SceneGraph(
        list(nodes.values()),
        roots,
        stats,
        profile.version if profile is not None else None,
    )
