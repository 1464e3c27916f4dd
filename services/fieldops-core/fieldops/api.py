from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from fieldops.orchestrator import Orchestrator
from fieldops.schemas.events import InputAccepted, InputEvent, InputKind, NormalizedResponse
from fieldops.schemas.intents import SceneContext, SuggestedAction, WorkflowState

router = APIRouter()


def _orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


@router.get("/health")
async def health(request: Request) -> dict[str, str]:
    orchestrator = _orchestrator(request)
    classifier = "backend" if orchestrator.classifier.initialized else "heuristic"
    return {"status": "ok", "classifier": classifier}


@router.post("/inputs", response_model=InputAccepted, status_code=202)
async def submit_input(payload: InputEvent, request: Request) -> InputAccepted:
    _orchestrator(request).receive_input(payload)
    return InputAccepted(tenant_id=payload.tenant_id, user_id=payload.user_id)


@router.post("/inputs/sync", response_model=NormalizedResponse)
async def submit_input_sync(payload: InputEvent, request: Request) -> NormalizedResponse:
    return await _orchestrator(request).process_input(payload)


@router.get("/workflow/{tenant_id}/{user_id}", response_model=WorkflowState)
async def get_workflow(tenant_id: str, user_id: str, request: Request) -> WorkflowState:
    state = await _orchestrator(request).get_workflow_state(tenant_id, user_id)
    if state is None:
        raise HTTPException(status_code=404, detail="No workflow state for this user")
    return state


@router.get("/workflow/{tenant_id}/{user_id}/suggestions", response_model=list[SuggestedAction])
async def get_workflow_suggestions(tenant_id: str, user_id: str, request: Request) -> list[SuggestedAction]:
    return await _orchestrator(request).get_workflow_suggestions(tenant_id, user_id)


@router.delete("/workflow/{tenant_id}/{user_id}", status_code=204)
async def reset_workflow(tenant_id: str, user_id: str, request: Request) -> None:
    await _orchestrator(request).reset_workflow(tenant_id, user_id)


@router.get("/scene/{tenant_id}/{user_id}", response_model=SceneContext)
async def get_scene(tenant_id: str, user_id: str, request: Request) -> SceneContext:
    return _orchestrator(request).get_scene(tenant_id, user_id)


@router.delete("/sessions/{tenant_id}/{user_id}", status_code=204)
async def reset_session(tenant_id: str, user_id: str, request: Request) -> None:
    await _orchestrator(request).reset_session(tenant_id, user_id)


@router.websocket("/responses/stream")
async def response_stream(websocket: WebSocket, tenant_id: str, user_id: str) -> None:
    """
    Subscribe to every response published for (tenant_id, user_id).
    Clients may also push inputs on the same socket as
    {"type": "input", "content": ..., "input_kind": "voice|text|ui"}.
    """
    await websocket.accept()
    orchestrator: Orchestrator = websocket.app.state.orchestrator

    async def deliver(response: NormalizedResponse) -> None:
        await websocket.send_json({"type": "response", "data": response.model_dump(mode="json")})

    orchestrator.subscribe(tenant_id, user_id, deliver)
    try:
        while True:
            incoming = await websocket.receive_json()
            if incoming.get("type") != "input":
                continue
            try:
                event = InputEvent(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    input_kind=incoming.get("input_kind", InputKind.TEXT),
                    content=incoming.get("content", ""),
                    metadata=incoming.get("metadata"),
                )
            except PydanticValidationError as exc:
                detail = exc.errors(include_url=False, include_context=False)
                await websocket.send_json({"type": "error", "detail": detail})
                continue
            orchestrator.receive_input(event)
    except WebSocketDisconnect:
        return
    finally:
        orchestrator.unsubscribe(tenant_id, user_id, deliver)
