"""
JSON scene documents.

A scene document is the serialized form of a :class:`MemoryScene`:

    {
      "document": {"id": "0:0", "name": "Document", "plugin_data": {}},
      "current_page": "0:1",
      "pages": [
        {"id": "0:1", "name": "Page 1", "children": [
          {"id": "1:1", "type": "RECTANGLE", "name": "A",
           "x": 0, "y": 0, "width": 100, "height": 50}
        ]}
      ]
    }

Connector records live in each page's ``plugin_data`` like any other host.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from freeflow.scene.memory import MemoryScene


def read_document(path: Path) -> dict[str, Any]:
    """Read a scene document as a dict. Raises ValueError if it is not an object."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Scene document must be a JSON object: {path}")
    return data


def load_document(path: Path, auto_dispatch: bool = True) -> MemoryScene:
    """Load a scene document from disk."""
    return MemoryScene.from_dict(read_document(path), auto_dispatch=auto_dispatch)


def save_document(scene: MemoryScene, path: Path) -> None:
    """Write a scene document to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(scene.to_dict(), indent=2) + "\n", encoding="utf-8")
