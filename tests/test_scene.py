"""Tests for the in-memory scene host and scene documents."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from freeflow.colors import hex_to_rgb
from freeflow.events import (
    CURRENT_PAGE_CHANGE,
    NODE_CHANGE,
    SELECTION_CHANGE,
    ChangeType,
)
from freeflow.models import Rect, Segment, StrokeCap, VectorPath, Vertex
from freeflow.scene import (
    LabelContent,
    MemoryScene,
    NodeType,
    Stroke,
    load_document,
    read_document,
    save_document,
)


def _record_changes(scene: MemoryScene) -> list[tuple[str, str, ChangeType]]:
    changes: list[tuple[str, str, ChangeType]] = []

    def handler(event) -> None:
        changes.extend((event.page_id, c.id, c.type) for c in event.changes)

    scene.events.on(NODE_CHANGE, handler)
    return changes


class TestMemorySceneTree:
    """Tests for node lookup and geometry."""

    def test_default_document(self) -> None:
        scene = MemoryScene()

        assert scene.root.type == NodeType.DOCUMENT
        assert scene.current_page.id == "0:1"
        assert [p.name for p in scene.pages] == ["Page 1"]

    def test_absolute_bounds_of_nested_nodes(self, scene: MemoryScene) -> None:
        frame = scene.add_node(NodeType.FRAME, x=100, y=50, width=500, height=500)
        group = scene.add_node(NodeType.GROUP, x=10, y=10, parent=frame)
        rect = scene.add_node(NodeType.RECTANGLE, x=5, y=5, width=20, height=30, parent=group)

        assert scene.get_bounds(rect) == Rect(115, 65, 20, 30)
        assert scene.get_bounds(scene.current_page) is None

    def test_vector_bounds_follow_vertices(self, scene: MemoryScene) -> None:
        vector = scene.create_vector()
        path = VectorPath(
            vertices=[Vertex(50, 50), Vertex(150, 200)],
            segments=[Segment(0, 1)],
        )
        asyncio.run(scene.set_vector_path(vector, path))

        assert scene.get_bounds(vector) == Rect(50, 50, 100, 150)

    def test_descendants_node_first(self, scene: MemoryScene) -> None:
        frame = scene.add_node(NodeType.FRAME, node_id="f")
        scene.add_node(NodeType.RECTANGLE, parent=frame, node_id="r1")
        group = scene.add_node(NodeType.GROUP, parent=frame, node_id="g")
        scene.add_node(NodeType.TEXT, parent=group, node_id="t")

        assert scene.get_descendant_ids(frame) == ["f", "r1", "g", "t"]

    def test_common_container(self, scene: MemoryScene) -> None:
        outer = scene.add_node(NodeType.FRAME, name="outer")
        inner = scene.add_node(NodeType.SECTION, name="inner", parent=outer)
        group = scene.add_node(NodeType.GROUP, parent=inner)
        a = scene.add_node(NodeType.RECTANGLE, parent=group)
        b = scene.add_node(NodeType.RECTANGLE, parent=inner)
        c = scene.add_node(NodeType.RECTANGLE, parent=outer)
        d = scene.add_node(NodeType.RECTANGLE)

        assert scene.find_common_container(a, b) is inner
        assert scene.find_common_container(a, c) is outer
        assert scene.find_common_container(a, d) is None

    def test_find_by_name(self, scene: MemoryScene) -> None:
        a = scene.add_node(NodeType.RECTANGLE, name="A")
        scene.add_node(NodeType.RECTANGLE, name="B")

        assert scene.find_by_name("A") == [a]
        assert scene.find_by_name("missing") == []

    def test_leaf_cannot_hold_children(self, scene: MemoryScene) -> None:
        rect = scene.add_node(NodeType.RECTANGLE)
        with pytest.raises(ValueError):
            scene.add_node(NodeType.RECTANGLE, parent=rect)

    def test_plugin_data_and_revision(self, scene: MemoryScene) -> None:
        page = scene.current_page
        before = scene.revision

        scene.set_plugin_data(page, "key", "value")
        assert scene.get_plugin_data(page, "key") == "value"
        assert scene.revision == before + 1

        scene.set_plugin_data(page, "key", "value")
        assert scene.revision == before + 1

        scene.set_plugin_data(page, "key", "")
        assert "key" not in page.plugin_data
        assert scene.get_plugin_data(page, "missing") == ""

    @pytest.mark.asyncio
    async def test_label_hugs_text(self, scene: MemoryScene) -> None:
        label = scene.create_label()
        content = LabelContent(
            text="ab\nabcd",
            font_family="Inter",
            font_size=10,
            padding=5,
            corner_radius=5,
            fill=hex_to_rgb("000000"),
            text_color=hex_to_rgb("FFFFFF"),
        )

        await scene.set_label(label, content)

        assert label.name == " "
        assert label.width == pytest.approx(4 * 10 * 0.6 + 10)
        assert label.height == pytest.approx(2 * 10 * 1.2 + 10)

    def test_remove_page_is_refused(self, scene: MemoryScene) -> None:
        with pytest.raises(ValueError):
            scene.remove_node(scene.current_page)


class TestMemorySceneNotifications:
    """Tests for queued node change notifications."""

    @pytest.mark.asyncio
    async def test_changes_are_coalesced_per_page(self, scene: MemoryScene) -> None:
        a = scene.add_node(NodeType.RECTANGLE, node_id="a")
        b = scene.add_node(NodeType.RECTANGLE, node_id="b")
        events = []
        scene.events.on(NODE_CHANGE, events.append)

        scene.move_node(a, 10, 10)
        scene.resize_node(b, 5, 5)
        await scene.flush()

        assert len(events) == 1
        assert [(c.id, c.type) for c in events[0].changes] == [
            ("a", ChangeType.CREATE),
            ("b", ChangeType.CREATE),
            ("a", ChangeType.PROPERTY_CHANGE),
            ("b", ChangeType.PROPERTY_CHANGE),
        ]

    @pytest.mark.asyncio
    async def test_remove_reports_whole_subtree(self, scene: MemoryScene) -> None:
        frame = scene.add_node(NodeType.FRAME, node_id="f")
        scene.add_node(NodeType.RECTANGLE, parent=frame, node_id="r")
        await scene.flush()
        changes = _record_changes(scene)

        scene.remove_node(frame)
        await scene.flush()

        assert changes == [
            ("0:1", "f", ChangeType.DELETE),
            ("0:1", "r", ChangeType.DELETE),
        ]
        assert "r" not in scene

    @pytest.mark.asyncio
    async def test_page_change_clears_selection(self, scene: MemoryScene) -> None:
        rect = scene.add_node(NodeType.RECTANGLE)
        scene.selection = [rect]
        page = scene.add_page("Page 2")
        events = []
        scene.events.on(CURRENT_PAGE_CHANGE, events.append)
        scene.events.on(SELECTION_CHANGE, events.append)

        scene.set_current_page(page)
        await scene.flush()

        assert scene.selection == []
        assert events[-1].previous_page_id == "0:1"
        assert events[-1].page_id == page.id

    @pytest.mark.asyncio
    async def test_auto_dispatch_on_running_loop(self) -> None:
        scene = MemoryScene()
        rect = scene.add_node(NodeType.RECTANGLE)
        changes = _record_changes(scene)

        scene.move_node(rect, 1, 1)
        await asyncio.sleep(0.01)

        assert (scene.current_page.id, rect.id, ChangeType.PROPERTY_CHANGE) in changes
        assert scene.pending_notifications == 0

    def test_no_dispatch_without_loop(self) -> None:
        scene = MemoryScene()
        scene.add_node(NodeType.RECTANGLE)
        assert scene.pending_notifications == 1


class TestSceneDocuments:
    """Tests for to_dict/from_dict, sync_from and document files."""

    def _drawn_scene(self) -> MemoryScene:
        scene = MemoryScene(auto_dispatch=False)
        frame = scene.add_node(NodeType.FRAME, name="F", x=10, y=10, width=300, height=300)
        scene.add_node(NodeType.RECTANGLE, name="R", width=10, height=10, parent=frame)
        vector = scene.create_vector()
        asyncio.run(
            scene.set_vector_path(
                vector,
                VectorPath([Vertex(0, 0, StrokeCap.ROUND), Vertex(5, 5)], [Segment(0, 1, (1, 0), (-1, 0))]),
            )
        )
        scene.set_stroke(vector, Stroke(color=hex_to_rgb("FF0000"), dash_pattern=[2, 2]))
        scene.set_plugin_data(scene.current_page, "saved-arrows", "[]")
        return scene

    def test_round_trip(self) -> None:
        scene = self._drawn_scene()
        loaded = MemoryScene.from_dict(json.loads(json.dumps(scene.to_dict())))

        assert loaded.to_dict() == scene.to_dict()
        assert loaded.revision == 0
        assert loaded.pending_notifications == 0

    def test_save_and_load(self, tmp_path: Path) -> None:
        scene = self._drawn_scene()
        path = tmp_path / "docs" / "scene.json"

        save_document(scene, path)
        loaded = load_document(path)

        assert loaded.get_plugin_data(loaded.current_page, "saved-arrows") == "[]"
        assert [n.name for n in loaded.find_by_name("R")] == ["R"]

    def test_read_document_requires_object(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            read_document(path)

    @pytest.mark.asyncio
    async def test_sync_from_reports_differences(self) -> None:
        scene = MemoryScene(auto_dispatch=False)
        a = scene.add_node(NodeType.RECTANGLE, name="A", node_id="a")
        scene.add_node(NodeType.RECTANGLE, name="B", node_id="b")
        await scene.flush()

        data = scene.to_dict()
        page = data["pages"][0]
        page["children"] = [
            {**page["children"][0], "x": 40},
            {"id": "c", "type": "RECTANGLE", "name": "C", "width": 5, "height": 5},
        ]
        changes = _record_changes(scene)

        count = scene.sync_from(data)
        await scene.flush()

        assert count == 3
        assert a.x == 40
        assert ("0:1", "a", ChangeType.PROPERTY_CHANGE) in changes
        assert ("0:1", "c", ChangeType.CREATE) in changes
        assert ("0:1", "b", ChangeType.DELETE) in changes

    def test_sync_from_identical_document_is_a_no_op(self) -> None:
        scene = self._drawn_scene()
        assert scene.sync_from(scene.to_dict()) == 0
