"""
Agent Node - Main entry point for the security reasoning agent
"""

import argparse
import asyncio
import sys
from typing import Dict, List, Optional

import numpy as np
from loguru import logger

from edge.src.cognitive_core import CognitiveCore
from edge.src.config_service import ConfigService
from edge.src.device_agent import AgentEvent, DeviceAgent
from edge.src.reasoning_oracle import ReasoningOracle
from edge.src.strategy_manager import StrategyManager
from shared.models import BoundingBox, CameraInfo, CameraPosition, DetectedObject, GlobalConfig
from shared.time_utils import now_us


LOG_LEVELS = ["ERROR", "WARNING", "INFO", "DEBUG", "TRACE"]
STATUS_INTERVAL_SECS = 60


def configure_logging(config: GlobalConfig, debug: bool = False) -> None:
    """Install the stderr sink at the level implied by the settings."""
    if debug:
        level = "DEBUG"
    elif config.enable_diagnostics:
        level = LOG_LEVELS[config.diagnostic_log_level]
    else:
        level = "WARNING"

    logger.remove()
    logger.add(sys.stderr, level=level,
               format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{line} - {message}")


class AgentNode:
    """Main Agent Node application."""

    def __init__(self, config_path: Optional[str] = None, simulate: bool = False,
                 frame_interval: float = 1.0):
        self.config_service = ConfigService(config_path=config_path)
        self.simulate = simulate
        self.frame_interval = frame_interval

        self.oracle: Optional[ReasoningOracle] = None
        self.strategy_manager: Optional[StrategyManager] = None
        self.cognitive_core: Optional[CognitiveCore] = None
        self.agents: Dict[str, DeviceAgent] = {}
        self.running = False
        self._rng = np.random.default_rng()

    async def initialize(self, debug: bool = False):
        """Initialize agent node components."""
        result = self.config_service.load()
        global_config = self.config_service.get_global_config()
        configure_logging(global_config, debug)

        if not result.success:
            logger.warning(f"Running with default configuration: {result.error}")

        logger.info("Initializing Agent Node...")

        if global_config.enable_llm_integration and global_config.llm_api_key:
            self.oracle = ReasoningOracle(global_config)
            self.oracle.start()
        else:
            logger.info("Reasoning oracle disabled, using rule-based reasoning only")

        self.strategy_manager = StrategyManager(oracle=self.oracle)
        self.cognitive_core = CognitiveCore(
            strategy_manager=self.strategy_manager,
            oracle=self.oracle,
            config_service=self.config_service,
        )
        self.cognitive_core.initialize()

        device_ids = self.config_service.get_device_ids()
        if not device_ids and self.simulate:
            self.config_service.get_device_config("sim-camera-1")
            self.config_service.get_device_config("sim-camera-2")
            device_ids = self.config_service.get_device_ids()

        for index, device_id in enumerate(device_ids):
            self.strategy_manager.register_camera(self._camera_for(device_id, index, device_ids))
            agent = DeviceAgent(device_id, self.config_service, self.strategy_manager, self.cognitive_core,
                                self.oracle)
            agent.set_event_callback(self._on_event)
            self.agents[device_id] = agent

        logger.info(f"Agent Node initialized with {len(self.agents)} cameras")

    def _camera_for(self, device_id: str, index: int, device_ids: List[str]) -> CameraInfo:
        config = self.config_service.get_device_config(device_id)
        neighbours = [device_ids[i] for i in (index - 1, index + 1) if 0 <= i < len(device_ids)]
        return CameraInfo(
            device_id=device_id,
            name=config.device_name or device_id,
            position=CameraPosition(x=float(index), y=0.0),
            adjacent_cameras=neighbours,
        )

    @staticmethod
    def _on_event(event: AgentEvent) -> None:
        logger.info(f"[{event.event_type_id}] {event.device_id}: {event.caption} - {event.description}")

    async def start(self):
        """Start the agent node processing."""
        if self.running:
            logger.warning("Agent Node is already running")
            return

        logger.info("Starting Agent Node...")
        self.running = True

        try:
            await self._main_loop()
        except asyncio.CancelledError:
            logger.info("Received shutdown signal")
        except Exception as e:
            logger.error(f"Error in main loop: {e}")
        finally:
            await self.stop()

    async def stop(self):
        """Stop the agent node processing."""
        if not self.running:
            return

        logger.info("Stopping Agent Node...")
        self.running = False

        for agent in self.agents.values():
            agent.shutdown()
        if self.cognitive_core:
            self.cognitive_core.shutdown()
        if self.oracle:
            self.oracle.stop()

        logger.info("Agent Node stopped")

    async def _main_loop(self):
        """Main processing loop."""
        last_status_us = now_us()
        while self.running:
            try:
                if self.simulate:
                    for agent in self.agents.values():
                        objects, motion = self._simulated_observation()
                        agent.process_frame(objects, motion, now_us())

                if now_us() - last_status_us > STATUS_INTERVAL_SECS * 1_000_000:
                    last_status_us = now_us()
                    logger.info(self.strategy_manager.generate_situation_report())

                await asyncio.sleep(self.frame_interval)

            except Exception as e:
                logger.error(f"Error in processing loop: {e}")
                await asyncio.sleep(1)

    def _simulated_observation(self):
        """Random person/vehicle detections and motion level for smoke runs."""
        objects = []
        for index in range(self._rng.poisson(1.0)):
            type_id = "person" if self._rng.random() < 0.8 else "vehicle"
            x, y = self._rng.uniform(0, 1800), self._rng.uniform(0, 950)
            attributes = {}
            if type_id == "person":
                attributes["recognitionStatus"] = "unknown" if self._rng.random() < 0.3 else "known"
            objects.append(DetectedObject(
                type_id=type_id,
                confidence=float(self._rng.uniform(0.6, 0.99)),
                bounding_box=BoundingBox(x=float(x), y=float(y), width=80.0, height=160.0),
                attributes=attributes,
                track_id=f"sim-{type_id}-{index}",
            ))
        motion = float(np.clip(self._rng.normal(0.05, 0.05), 0.0, 1.0))
        return objects, motion


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Security Reasoning Agent Node")
    parser.add_argument("--config", default=None,
                        help="Configuration file path (defaults to <dataStoragePath>/config.json)")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug mode")
    parser.add_argument("--simulate", action="store_true",
                        help="Feed randomly generated observations")
    parser.add_argument("--frame-interval", type=float, default=1.0,
                        help="Seconds between simulated frames")

    args = parser.parse_args()

    node = AgentNode(args.config, simulate=args.simulate, frame_interval=args.frame_interval)

    try:
        await node.initialize(debug=args.debug)
        await node.start()
    except Exception as e:
        logger.error(f"Failed to start agent node: {e}")
        return 1

    return 0


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
