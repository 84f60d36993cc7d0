"""
Scene graph hosts.
"""

from freeflow.scene.base import (
    LabelContent,
    NodeType,
    SceneHost,
    SceneNode,
    Stroke,
)
from freeflow.scene.document import load_document, read_document, save_document
from freeflow.scene.memory import MemoryScene

__all__ = [
    "LabelContent",
    "MemoryScene",
    "NodeType",
    "SceneHost",
    "SceneNode",
    "Stroke",
    "load_document",
    "read_document",
    "save_document",
]
