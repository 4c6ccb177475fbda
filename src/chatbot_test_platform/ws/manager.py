import datetime
from typing import Dict, Set
from fastapi import WebSocket
from chatbot_test_platform.config.logger import logger


class WSConnectionManager:
    """WebSocket 连接管理器（按场景推送运行进度）"""

    def __init__(self):
        # scenario_id -> set of websockets
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, scenario_id: str):
        """连接 WebSocket"""
        await websocket.accept()

        if scenario_id not in self.active_connections:
            self.active_connections[scenario_id] = set()

        self.active_connections[scenario_id].add(websocket)

        logger.info("WebSocket connected", scenario_id=scenario_id)

    def disconnect(self, websocket: WebSocket, scenario_id: str):
        """断开连接"""
        connections = self.active_connections.get(scenario_id)
        if connections is not None:
            connections.discard(websocket)
            if not connections:
                del self.active_connections[scenario_id]

        logger.info("WebSocket disconnected", scenario_id=scenario_id)

    async def broadcast(self, scenario_id: str, event: dict):
        """广播事件"""
        if scenario_id not in self.active_connections:
            return

        dead_connections = set()

        for websocket in self.active_connections[scenario_id]:
            try:
                await websocket.send_json(event)
            except Exception as e:
                logger.warning(f"Failed to send WebSocket message: {e}")
                dead_connections.add(websocket)

        for conn in dead_connections:
            self.active_connections[scenario_id].discard(conn)

    async def send_progress(self, event_type: str, scenario_id: str, **data):
        """运行器进度回调 -> 前端事件"""
        event = {
            "type": event_type,
            "scenarioId": scenario_id,
            "timestamp": datetime.datetime.now().isoformat(),
            "data": data,
        }
        await self.broadcast(scenario_id, event)
