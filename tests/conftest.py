"""Shared pytest fixtures for freeflow tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from freeflow.config import FreeflowConfig
from freeflow.scene import MemoryScene, NodeType, SceneNode, save_document
from freeflow.store import ConnectorStore


@pytest.fixture
def config() -> FreeflowConfig:
    """Config with a short quiet period so debounce tests stay fast."""
    return FreeflowConfig(debounce_ms=20)


@pytest.fixture
def scene() -> MemoryScene:
    """A scene whose notifications are delivered only by ``await scene.flush()``."""
    return MemoryScene(auto_dispatch=False)


@pytest.fixture
def nodes(scene: MemoryScene) -> tuple[SceneNode, SceneNode]:
    """Two rectangles, B 150px below A."""
    a = scene.add_node(NodeType.RECTANGLE, name="A", x=0, y=0, width=100, height=50)
    b = scene.add_node(NodeType.RECTANGLE, name="B", x=0, y=200, width=100, height=50)
    return a, b


@pytest.fixture
def store(scene: MemoryScene, config: FreeflowConfig) -> ConnectorStore:
    return ConnectorStore(scene, config)


@pytest.fixture
def document(tmp_path: Path) -> Path:
    """A scene document with rectangles A, B and a frame holding C and D."""
    scene = MemoryScene(auto_dispatch=False)
    scene.add_node(NodeType.RECTANGLE, name="A", x=0, y=0, width=100, height=50, node_id="2:1")
    scene.add_node(NodeType.RECTANGLE, name="B", x=0, y=200, width=100, height=50, node_id="2:2")
    frame = scene.add_node(
        NodeType.FRAME, name="Frame", x=500, y=0, width=400, height=400, node_id="2:3"
    )
    scene.add_node(
        NodeType.RECTANGLE, name="C", x=0, y=0, width=100, height=50, parent=frame, node_id="2:4"
    )
    scene.add_node(
        NodeType.RECTANGLE, name="D", x=250, y=0, width=100, height=50, parent=frame, node_id="2:5"
    )

    path = tmp_path / "scene.json"
    save_document(scene, path)
    return path


def find_node_data(data: dict, node_id: str) -> dict | None:
    """Find a node dict anywhere in a scene document."""
    stack = list(data["pages"])
    while stack:
        node = stack.pop()
        if node["id"] == node_id:
            return node
        stack.extend(node.get("children", []))
    return None


def edit_document(path: Path, node_id: str, **changes) -> None:
    """Change attributes of one node in a scene document on disk."""
    data = json.loads(path.read_text())
    find_node_data(data, node_id).update(changes)
    path.write_text(json.dumps(data))
