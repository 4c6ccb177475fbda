from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, Path, Query
from typing import List, Optional
from chatbot_test_platform.api.schemas import (
    DeleteScenarioResponse,
    ImportScenarioRequest,
    RunScenarioRequest,
    RunScenarioResponse,
    ScenarioCreateRequest,
    ScenarioResponse,
    ScenarioUpdateRequest,
)
from chatbot_test_platform.config.logger import logger
from chatbot_test_platform.core.errors import (
    RunInProgressError,
    ScenarioNotFoundError,
    ScenarioPreconditionError,
)
from chatbot_test_platform.scenarios.loader import ScenarioLoader
from chatbot_test_platform.services.scenario_service import ScenarioService
from chatbot_test_platform.ws.manager import WSConnectionManager


router = APIRouter(prefix="/api", tags=["scenarios"])

# 全局实例（在 main.py 中初始化）
scenario_service: Optional[ScenarioService] = None
scenario_loader: Optional[ScenarioLoader] = None
ws_manager: Optional[WSConnectionManager] = None


def _service() -> ScenarioService:
    if not scenario_service:
        raise HTTPException(status_code=500, detail="ScenarioService not initialized")
    return scenario_service


# ============================================================
# 1. 场景 CRUD
# ============================================================

@router.post("/scenarios", status_code=201, response_model=ScenarioResponse)
async def create_scenario(payload: ScenarioCreateRequest) -> ScenarioResponse:
    """创建新的测试场景（status=draft）"""

    service = _service()
    try:
        scenario = await service.create_scenario(
            user_id=payload.user_id,
            chatbot_id=payload.chatbot_id,
            name=payload.name,
            description=payload.description,
            cases=[c.model_dump() for c in payload.cases],
        )
        return ScenarioResponse.from_scenario(scenario)
    except ScenarioPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/scenarios/import/{name}", status_code=201, response_model=ScenarioResponse)
async def import_scenario(payload: ImportScenarioRequest, name: str = Path(...)) -> ScenarioResponse:
    """从 YAML 场景文件导入"""

    if not scenario_loader:
        raise HTTPException(status_code=500, detail="ScenarioLoader not initialized")

    definition = scenario_loader.load(name)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Scenario file not found: {name}")

    try:
        scenario = await _service().import_definition(
            definition,
            user_id=payload.user_id,
            chatbot_id=payload.chatbot_id,
        )
    except ScenarioPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ScenarioResponse.from_scenario(scenario)


@router.get("/scenarios", response_model=List[ScenarioResponse])
async def list_scenarios(
    user_id: str = Query(..., min_length=1),
    chatbot_id: Optional[str] = Query(None),
) -> List[ScenarioResponse]:
    """列出用户的测试场景（最新的在前）"""

    scenarios = await _service().list_scenarios(user_id, chatbot_id=chatbot_id)
    return [ScenarioResponse.from_scenario(s) for s in scenarios]


@router.get("/scenarios/{scenario_id}", response_model=ScenarioResponse)
async def get_scenario(scenario_id: str = Path(...)) -> ScenarioResponse:
    """获取单个场景"""

    try:
        scenario = await _service().get_scenario(scenario_id)
    except ScenarioNotFoundError:
        raise HTTPException(status_code=404, detail="Scenario not found")
    return ScenarioResponse.from_scenario(scenario)


@router.patch("/scenarios/{scenario_id}", response_model=ScenarioResponse)
async def update_scenario(
    payload: ScenarioUpdateRequest,
    scenario_id: str = Path(...),
) -> ScenarioResponse:
    """更新场景"""

    try:
        scenario = await _service().update_scenario(
            scenario_id,
            name=payload.name,
            description=payload.description,
            chatbot_id=payload.chatbot_id,
            cases=[c.model_dump() for c in payload.cases] if payload.cases is not None else None,
            status=payload.status,
        )
    except ScenarioNotFoundError:
        raise HTTPException(status_code=404, detail="Scenario not found")
    except ScenarioPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ScenarioResponse.from_scenario(scenario)


@router.post("/scenarios/{scenario_id}/archive", response_model=ScenarioResponse)
async def archive_scenario(scenario_id: str = Path(...)) -> ScenarioResponse:
    """归档场景"""

    try:
        scenario = await _service().archive_scenario(scenario_id)
    except ScenarioNotFoundError:
        raise HTTPException(status_code=404, detail="Scenario not found")
    return ScenarioResponse.from_scenario(scenario)


@router.delete("/scenarios/{scenario_id}", response_model=DeleteScenarioResponse)
async def delete_scenario(scenario_id: str = Path(...)) -> DeleteScenarioResponse:
    """删除场景"""

    deleted = await _service().delete_scenario(scenario_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Scenario not found")
    return DeleteScenarioResponse(success=True, message="Scenario deleted successfully")


# ============================================================
# 2. 运行场景
# ============================================================

@router.post("/scenarios/{scenario_id}/run", response_model=RunScenarioResponse)
async def run_scenario(
    payload: Optional[RunScenarioRequest] = None,
    scenario_id: str = Path(...),
) -> RunScenarioResponse:
    """
    按顺序运行场景的全部用例并返回报告

    结果保存失败时仍返回 200 和报告，saved=False 并附带 warning
    """

    chatbot_id = payload.chatbot_id if payload else None

    try:
        outcome = await _service().run_scenario(scenario_id, chatbot_id=chatbot_id)
    except ScenarioNotFoundError:
        raise HTTPException(status_code=404, detail="Scenario not found")
    except ScenarioPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(
        "Scenario run finished",
        scenario_id=scenario_id,
        saved=outcome.saved,
        success_rate=outcome.report.success_rate_percent,
    )
    return RunScenarioResponse.from_outcome(outcome)


# ============================================================
# 3. WebSocket 实时进度
# ============================================================

@router.websocket("/ws/scenarios/{scenario_id}")
async def scenario_progress(websocket: WebSocket, scenario_id: str):
    """订阅场景运行进度"""

    if not ws_manager:
        await websocket.close(code=1011)
        return

    await ws_manager.connect(websocket, scenario_id)
    try:
        while True:
            # 客户端消息只用于保活
            await websocket.receive_text()
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket, scenario_id)
