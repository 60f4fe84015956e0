# /chatbotflex/routes/flows.py

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from chatbotflex.config.settings import settings
from chatbotflex.models.api import APIResponse, FlowDocument, SimulateRequest
from chatbotflex.models.flow import FlowGraph
from chatbotflex.services.flow_service import flow_service
from chatbotflex.services.flow_store import FlowValidationError, flow_store
from chatbotflex.utils.dependencies import verify_jwt_token

# Admin surface of the flow store: authoring, activation and a dry-run simulator.

router = APIRouter(
    prefix="/flows",
    tags=["Flows"],
    dependencies=[Depends(verify_jwt_token)]
)

log = structlog.get_logger(__name__)


def _ok(message: str, data: dict | None = None) -> APIResponse:
    return APIResponse(success=True, message=message, data=data, version=settings.api_version)


def _not_found(flow_id: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Flow {flow_id} not found")


def _invalid(error: FlowValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"message": "Flow graph is invalid", "problems": error.problems},
    )


@router.get("", response_model=APIResponse)
async def list_flows():
    flows = await flow_store.list_flows()
    return _ok("Flows retrieved.", {"flows": flows, "count": len(flows)})


@router.get("/active", response_model=APIResponse)
async def get_active_flow():
    graph = await flow_store.load_active_flow_graph()
    if graph is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active flow")
    return _ok("Active flow retrieved.", {"flow": graph.model_dump(by_alias=True)})


@router.get("/{flow_id}", response_model=APIResponse)
async def get_flow(flow_id: str):
    flow = await flow_store.get_flow(flow_id)
    if flow is None:
        raise _not_found(flow_id)
    return _ok("Flow retrieved.", {"flow": flow})


@router.post("", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def create_flow(flow: FlowDocument):
    try:
        created = await flow_store.create_flow(flow.to_document())
    except FlowValidationError as e:
        raise _invalid(e)
    log.info("Flow created.", flow_id=created["id"], name=created.get("name"))
    return _ok("Flow created.", {"flow": created})


@router.put("/{flow_id}", response_model=APIResponse)
async def update_flow(flow_id: str, flow: FlowDocument):
    try:
        updated = await flow_store.update_flow(flow_id, flow.to_document())
    except FlowValidationError as e:
        raise _invalid(e)
    if updated is None:
        raise _not_found(flow_id)
    log.info("Flow updated.", flow_id=flow_id)
    return _ok("Flow updated.", {"flow": updated})


@router.delete("/{flow_id}", response_model=APIResponse)
async def delete_flow(flow_id: str):
    if not await flow_store.delete_flow(flow_id):
        raise _not_found(flow_id)
    log.info("Flow deleted.", flow_id=flow_id)
    return _ok("Flow deleted.")


@router.post("/{flow_id}/activate", response_model=APIResponse)
async def activate_flow(flow_id: str):
    if not await flow_store.activate_flow(flow_id):
        raise _not_found(flow_id)
    log.info("Flow activated.", flow_id=flow_id)
    return _ok("Flow activated.", {"active_flow_id": flow_id})


@router.post("/{flow_id}/deactivate", response_model=APIResponse)
async def deactivate_flow(flow_id: str):
    if not await flow_store.deactivate_flow(flow_id):
        raise _not_found(flow_id)
    log.info("Flow deactivated.", flow_id=flow_id)
    return _ok("Flow deactivated.")


@router.post("/{flow_id}/simulate", response_model=APIResponse)
async def simulate_flow(flow_id: str, request: SimulateRequest):
    """Runs one turn of a stored flow (active or not) against the given context. Nothing is persisted or sent."""
    flow = await flow_store.get_flow(flow_id)
    if flow is None:
        raise _not_found(flow_id)
    result = flow_service.run(FlowGraph.from_document(flow), request.text, request.context)
    return _ok("Simulation complete.", {"result": result.model_dump(by_alias=True)})
