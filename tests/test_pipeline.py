"""Tests for the change reconciliation pipeline."""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import AsyncMock

import pytest

from freeflow.config import FreeflowConfig
from freeflow.events import (
    CURRENT_PAGE_CHANGE,
    NODE_CHANGE,
    ChangeType,
    NodeChange,
    NodeChangeEvent,
)
from freeflow.models import ConnectorGeometry, ConnectorStyle, ConnectorText, Direction
from freeflow.pipeline import ReconciliationPipeline
from freeflow.scene import MemoryScene, NodeType, SceneNode
from freeflow.store import ConnectorStore


@pytest.fixture
def pipeline(scene: MemoryScene, store: ConnectorStore, config: FreeflowConfig) -> ReconciliationPipeline:
    pipeline = ReconciliationPipeline(scene, store, config)
    pipeline.start()
    return pipeline


async def _connect(scene: MemoryScene, store: ConnectorStore, a: SceneNode, b: SceneNode) -> SceneNode:
    node = await store.create(a, b, ConnectorStyle(), ConnectorGeometry())
    # Deliver the creation noise so tests start from a quiet scene
    await scene.flush()
    return node


async def _wait_for_flush(pipeline: ReconciliationPipeline) -> None:
    await asyncio.sleep(pipeline.config.debounce_seconds * 4)
    await pipeline.debouncer.drain()


class TestPropertyChanges:
    """Tests for debounced reconciliation of moved nodes."""

    @pytest.mark.asyncio
    async def test_moved_endpoint_is_reconciled(self, scene, store, pipeline, nodes) -> None:
        a, b = nodes
        node = await _connect(scene, store, a, b)
        assert not pipeline.pending

        scene.move_node(b, 300, 0)
        await scene.flush()

        assert pipeline.pending == {node.id}
        assert pipeline.debouncer.armed

        await _wait_for_flush(pipeline)

        assert not pipeline.pending
        assert store.get(node.id).direction == Direction.HORIZONTAL

    @pytest.mark.asyncio
    async def test_burst_updates_each_connector_once(self, scene, store, pipeline, nodes, monkeypatch) -> None:
        a, b = nodes
        node = await _connect(scene, store, a, b)
        spy = AsyncMock(wraps=store.update)
        monkeypatch.setattr(store, "update", spy)

        for x in (10, 20, 30):
            scene.move_node(b, x, 200)
            scene.move_node(a, x, 0)
            await scene.flush()
            await asyncio.sleep(0.002)

        await _wait_for_flush(pipeline)

        spy.assert_awaited_once_with(node.id)

    @pytest.mark.asyncio
    async def test_connector_changes_are_ignored(self, scene, store, pipeline, nodes) -> None:
        node = await _connect(scene, store, *nodes)

        scene.move_node(node, 5, 5)
        await scene.flush()

        assert not pipeline.pending
        assert not pipeline.debouncer.armed

    @pytest.mark.asyncio
    async def test_container_change_reaches_nested_endpoint(self, scene, store, pipeline) -> None:
        frame = scene.add_node(NodeType.FRAME, x=0, y=0, width=200, height=200)
        c = scene.add_node(NodeType.RECTANGLE, name="C", width=100, height=50, parent=frame)
        d = scene.add_node(NodeType.RECTANGLE, name="D", y=400, width=100, height=50)
        node = await _connect(scene, store, c, d)

        scene.move_node(frame, 50, 0)
        await scene.flush()

        assert pipeline.pending == {node.id}

    @pytest.mark.asyncio
    async def test_other_pages_and_creations_are_ignored(self, scene, store, pipeline, nodes) -> None:
        a, b = nodes
        await _connect(scene, store, a, b)

        await pipeline.handle_node_change(
            NodeChangeEvent(page_id="9:9", changes=[NodeChange(a.id, ChangeType.PROPERTY_CHANGE)])
        )
        await pipeline.handle_node_change(
            NodeChangeEvent(page_id=scene.current_page.id, changes=[NodeChange(a.id, ChangeType.CREATE)])
        )

        assert not pipeline.pending

    @pytest.mark.asyncio
    async def test_settle_flushes_immediately(self, scene, store, pipeline, nodes) -> None:
        a, b = nodes
        node = await _connect(scene, store, a, b)
        scene.move_node(b, 300, 0)
        await scene.flush()

        await pipeline.settle()

        assert not pipeline.debouncer.armed
        assert store.get(node.id).direction == Direction.HORIZONTAL

    @pytest.mark.asyncio
    async def test_flush_isolates_failures(self, scene, store, pipeline, nodes, monkeypatch, caplog) -> None:
        a, b = nodes
        c = scene.add_node(NodeType.RECTANGLE, name="C", x=400, width=100, height=50)
        bad = await _connect(scene, store, a, b)
        good = await _connect(scene, store, a, c)
        updated: list[str] = []
        update = store.update

        async def flaky(connector_id, *args, **kwargs):
            if connector_id == bad.id:
                raise RuntimeError("boom")
            updated.append(connector_id)
            return await update(connector_id, *args, **kwargs)

        monkeypatch.setattr(store, "update", flaky)
        pipeline.pending.update({bad.id, good.id})

        with caplog.at_level(logging.ERROR, logger="freeflow"):
            processed = await pipeline.flush()

        assert sorted(processed) == sorted([bad.id, good.id])
        assert updated == [good.id]
        assert f"Failed to update connector {bad.id}" in caplog.text


class TestDeletions:
    """Tests for eager deletion handling."""

    @pytest.mark.asyncio
    async def test_deleted_endpoint_removes_connector_immediately(self, scene, store, pipeline, nodes) -> None:
        a, b = nodes
        node = await _connect(scene, store, a, b)
        scene.move_node(a, 0, 10)
        await scene.flush()
        assert pipeline.pending == {node.id}

        scene.remove_node(b)
        await scene.flush()

        assert node.id not in store
        assert node.id not in scene
        assert not pipeline.pending

    @pytest.mark.asyncio
    async def test_deleted_label_unlinks_text(self, scene, store, pipeline, nodes) -> None:
        node = await _connect(scene, store, *nodes)
        await store.update(node.id, text=ConnectorText("label"))
        await scene.flush()
        label = scene.node(store.get(node.id).text_node_id)

        scene.remove_node(label)
        await scene.flush()

        connector = store.get(node.id)
        assert connector is not None
        assert connector.text_node_id is None

    @pytest.mark.asyncio
    async def test_deleted_connector_node_drops_record(self, scene, store, pipeline, nodes) -> None:
        node = await _connect(scene, store, *nodes)
        await store.update(node.id, text=ConnectorText("label"))
        await scene.flush()
        label_id = store.get(node.id).text_node_id

        scene.remove_node(node)
        await scene.flush()

        assert len(store) == 0
        assert label_id not in scene

    @pytest.mark.asyncio
    async def test_deleted_container_removes_connectors_inside(self, scene, store, pipeline) -> None:
        frame = scene.add_node(NodeType.FRAME, width=200, height=200)
        c = scene.add_node(NodeType.RECTANGLE, name="C", width=100, height=50, parent=frame)
        d = scene.add_node(NodeType.RECTANGLE, name="D", y=400, width=100, height=50)
        node = await _connect(scene, store, c, d)

        scene.remove_node(frame)
        await scene.flush()

        assert node.id not in store


class TestPageSwitching:
    """Tests for attach/detach across page changes."""

    @pytest.mark.asyncio
    async def test_switch_persists_and_loads(self, scene, store, pipeline, nodes) -> None:
        first = scene.current_page
        node = await _connect(scene, store, *nodes)
        second = scene.add_page("Page 2")

        scene.set_current_page(second)
        await scene.flush()

        saved = json.loads(scene.get_plugin_data(first, "saved-arrows"))
        assert [c["id"] for c in saved] == [node.id]
        assert len(store) == 0
        assert pipeline.page is second

        scene.set_current_page(first)
        await scene.flush()

        assert store.ids() == [node.id]
        assert pipeline.page is first

    @pytest.mark.asyncio
    async def test_switch_settles_pending_changes_first(self, scene, store, pipeline, nodes) -> None:
        a, b = nodes
        first = scene.current_page
        node = await _connect(scene, store, a, b)
        scene.move_node(b, 300, 0)
        await scene.flush()
        assert pipeline.debouncer.armed

        scene.set_current_page(scene.add_page("Page 2"))
        await scene.flush()

        saved = json.loads(scene.get_plugin_data(first, "saved-arrows"))
        assert saved[0]["direction"] == "horizontal"
        assert scene.page_of(node) is first

    @pytest.mark.asyncio
    async def test_old_page_is_no_longer_watched(self, scene, store, pipeline, nodes) -> None:
        a, b = nodes
        await _connect(scene, store, a, b)
        scene.set_current_page(scene.add_page("Page 2"))
        await scene.flush()

        scene.move_node(b, 300, 0)
        await scene.flush()

        assert not pipeline.pending

    def test_stop_unsubscribes(self, scene, pipeline) -> None:
        pipeline.stop()

        assert not scene.events.has_handlers(NODE_CHANGE)
        assert not scene.events.has_handlers(CURRENT_PAGE_CHANGE)
        assert pipeline.page is None
        assert not pipeline.started
