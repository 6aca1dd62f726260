"""
Tests for the agent node entry point.
"""

import asyncio
import json

import pytest

from edge.main import AgentNode


def write_config(tmp_path, devices, **settings) -> str:
    document = {"dataStoragePath": str(tmp_path), "enableDiagnostics": False, "devices": devices}
    document.update(settings)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(document), encoding="utf-8")
    return str(path)


class TestAgentNode:
    """Test cases for AgentNode."""

    @pytest.mark.asyncio
    async def test_initialize_builds_agents_and_topology(self, tmp_path):
        """Test initialization builds one agent per device and the topology."""
        config_path = write_config(tmp_path, [
            {"deviceId": "cam-a", "deviceName": "Lobby"},
            {"deviceId": "cam-b"},
            {"deviceId": "cam-c"},
        ])
        node = AgentNode(config_path)

        await node.initialize()
        try:
            assert sorted(node.agents) == ["cam-a", "cam-b", "cam-c"]
            assert node.oracle is None
            assert node.cognitive_core.is_running
            assert node.strategy_manager.get_adjacent_cameras("cam-b") == ["cam-a", "cam-c"]
            assert node.strategy_manager.get_cameras()["cam-a"].name == "Lobby"
        finally:
            node.running = True
            await node.stop()

        assert not node.cognitive_core.is_running

    @pytest.mark.asyncio
    async def test_simulated_feed_processes_frames(self, tmp_path):
        """Test the simulated feed drives every agent until cancelled."""
        config_path = write_config(tmp_path, [])
        node = AgentNode(config_path, simulate=True, frame_interval=0.01)
        await node.initialize()

        task = asyncio.create_task(node.start())
        await asyncio.sleep(0.1)
        task.cancel()
        await task

        assert sorted(node.agents) == ["sim-camera-1", "sim-camera-2"]
        assert not node.running
        assert all(agent.get_status()["processedFrames"] > 0 for agent in node.agents.values())

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, tmp_path):
        """Test stopping a node that never started does nothing."""
        node = AgentNode(write_config(tmp_path, [{"deviceId": "cam-a"}]))
        await node.initialize()

        await node.stop()

        # Never started, so the shared components are still up
        assert node.cognitive_core.is_running
        node.cognitive_core.shutdown()
