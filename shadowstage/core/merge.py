"""
Merge view: the logical file list combining the remote tree with the overlay.
Pure functions; the caller fetches the remote list fresh on every call.
"""

from typing import Any, Dict, Iterable, List, Mapping


def merge_file_lists(remote_files: Iterable[str], overlay_index: Mapping[str, Any]) -> List[str]:
    """Remote paths, plus live staged paths, minus tombstoned paths; sorted and unique.

    overlay_index values may be OverlayIndexEntry objects or plain dicts with a
    "deleted" field.
    """
    merged = set(p for p in (remote_files or []) if p)
    for path, meta in (overlay_index or {}).items():
        deleted = meta.get("deleted") if isinstance(meta, dict) else getattr(meta, "deleted", True)
        if not meta or deleted:
            merged.discard(path)
            continue
        merged.add(path)
    return sorted(merged)


def build_tree(file_paths: Iterable[str]) -> Dict[str, Any]:
    """Nested directory tree for a flat path list; directories sort before files."""
    root = {"name": "/", "type": "dir", "path": "", "children": {}}
    for file_path in file_paths:
        parts = [p for p in str(file_path).split("/") if p]
        cursor = root
        for i, part in enumerate(parts):
            is_file = i == len(parts) - 1
            children = cursor["children"]
            if part not in children:
                children[part] = {
                    "name": part,
                    "type": "file" if is_file else "dir",
                    "path": "/".join(parts[:i + 1]),
                    "children": None if is_file else {},
                }
            cursor = children[part]
            if cursor["children"] is None and not is_file:
                # a file and a directory share a name; keep the directory
                cursor["type"] = "dir"
                cursor["children"] = {}

    def normalize(node):
        if node["type"] == "file":
            return {"name": node["name"], "type": "file", "path": node["path"]}
        children = [normalize(child) for child in node["children"].values()]
        children.sort(key=lambda c: (0 if c["type"] == "dir" else 1, c["name"]))
        return {"name": node["name"], "type": "dir", "path": node["path"], "children": children}

    return normalize(root)
