#!/usr/bin/env python3
"""
Scene Extractor

Loads a JSON scene dump, resolves every node's mesh and prints a summary of
the scene graph. Optionally writes a JSON report with per-node mesh sources
and world-space bounds.

Usage:
    python3 scripts/extract_scene.py level1.json
    python3 scripts/extract_scene.py level1.json --tree
    python3 scripts/extract_scene.py level1.json --report          # output/reports/level1.json
    python3 scripts/extract_scene.py level1.json --version 2019.4.31f1 --no-textures
"""

import os
import sys
import json
import logging
import argparse
from pathlib import Path

# Add project root to path (go up 1 level from scripts)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from unityscene import LoadOptions, MemoryAssetSource, SceneError, load_scene


# =============================================================================
# CONFIGURATION
# =============================================================================

def load_config():
    """Import config.py, exiting with instructions when it is missing."""
    config_path = os.path.join(PROJECT_ROOT, "config.py")
    example_path = os.path.join(PROJECT_ROOT, "config.example.py")

    if not os.path.exists(config_path):
        print(f"\n❌ ERROR: config.py not found!")
        print(f"   Please copy config.example.py to config.py and update paths:")
        print(f"   $ cp {example_path} {config_path}")
        sys.exit(1)

    try:
        import config
    except ImportError as e:
        print(f"\n❌ ERROR: Failed to import config.py: {e}")
        sys.exit(1)

    for name in ("ASSETS_PATH", "OUTPUT_DIR"):
        if not hasattr(config, name):
            print(f"\n❌ ERROR: config.py missing {name} variable")
            sys.exit(1)
    return config


def find_dump(path, assets_path):
    """Resolve a dump path as given, or relative to ASSETS_PATH."""
    candidate = Path(path)
    if candidate.exists():
        return candidate
    candidate = Path(assets_path) / path
    if candidate.exists():
        return candidate
    return None


# =============================================================================
# REPORTING
# =============================================================================

def node_report(node):
    entry = {
        "path_id": node.path_id,
        "name": node.name,
        "parent": node.parent.path_id if node.parent is not None else None,
        "mesh_source": node.mesh_source.value if node.mesh_source is not None else None,
        "world_position": node.world_position.tolist(),
        "bounds": {
            "min": node.bounds.min.tolist(),
            "max": node.bounds.max.tolist(),
        },
    }
    if node.mesh is not None:
        entry["mesh"] = {
            "name": node.mesh.name,
            "vertices": node.mesh.vertex_count,
            "triangles": node.mesh.triangle_count,
            "attributes": sorted(node.mesh.attribute_arrays()),
        }
    if node.root_bone is not None:
        entry["root_bone"] = node.root_bone.path_id
    if node.texture is not None:
        entry["texture"] = [node.texture.width, node.texture.height]
    return entry


def print_tree(graph):
    for root in graph.roots:
        stack = [(root, 0)]
        while stack:
            node, depth = stack.pop()
            label = node.name
            if node.mesh is not None:
                label += f"  [{node.mesh_source.value}: {node.mesh.vertex_count} verts, {node.mesh.triangle_count} tris]"
            print(f"   {'  ' * depth}{label}")
            stack.extend((child, depth + 1) for child in reversed(node.children))


def print_summary(graph):
    stats = graph.stats
    print(f"   Engine: {graph.version or 'unknown'}")
    print(f"   Objects: {stats.objects} ({stats.roots} roots, {stats.skipped_records} skipped records)")
    print(f"   Meshes: {stats.meshes_loaded}")
    print(f"      Batched:   {stats.batched_meshes}")
    print(f"      Skinned:   {stats.skinned_meshes}")
    print(f"      Collider:  {stats.collider_meshes}")
    print(f"      Filter:    {stats.filter_meshes}")
    print(f"   Decode errors: {stats.decode_errors}")
    print(f"   Unresolved references: {stats.unresolved_refs}")
    print(f"   Textures: {stats.textures_loaded} ({stats.texture_errors} failed)")


# =============================================================================
# MAIN
# =============================================================================

def main():
    parser = argparse.ArgumentParser(description="Unity Scene Extractor")
    parser.add_argument('dump', help="JSON scene dump (absolute, or relative to ASSETS_PATH)")
    parser.add_argument('--version', help="Decode with this engine version instead of the dump's")
    parser.add_argument('--no-textures', action='store_true', help="Skip texture resolution")
    parser.add_argument('--tree', action='store_true', help="Print the scene hierarchy")
    parser.add_argument('--report', nargs='?', const='', default=None,
                        help="Write a JSON report (default: OUTPUT_DIR/reports/<dump>.json)")
    parser.add_argument('--log-level', help="Logging level (default: config LOG_LEVEL)")
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=(args.log_level or getattr(config, "LOG_LEVEL", "INFO")).upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )

    print("=" * 60)
    print("Unity Scene Extractor")
    print("=" * 60)

    dump_path = find_dump(args.dump, config.ASSETS_PATH)
    if dump_path is None:
        print(f"\n❌ ERROR: Scene dump not found: {args.dump}")
        print(f"   Looked in the current directory and {config.ASSETS_PATH}")
        sys.exit(1)
    print(f"Dump: {dump_path}")
    print()

    try:
        source = MemoryAssetSource.from_json(str(dump_path))
    except SceneError as e:
        print(f"\n❌ ERROR: {e}")
        sys.exit(1)

    options = LoadOptions(version=args.version, load_textures=not args.no_textures)
    graph = load_scene(source, options)

    print_summary(graph)

    if args.tree:
        print()
        print("Hierarchy:")
        print_tree(graph)

    if args.report is not None:
        report_path = Path(args.report) if args.report else (
            Path(getattr(config, "REPORTS_DIR", os.path.join(config.OUTPUT_DIR, "reports")))
            / f"{dump_path.stem}.json"
        )
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report = {
            "dump": str(dump_path),
            "version": str(graph.version) if graph.version else None,
            "stats": graph.stats.as_dict(),
            "nodes": [node_report(node) for node in graph.walk()],
        }
        with open(report_path, 'w') as f:
            json.dump(report, f, indent=2)
        print()
        print(f"   ✓ Report written to {report_path}")

    print()
    print("=" * 60)
    print("Done")
    print("=" * 60)


if __name__ == "__main__":
    main()
