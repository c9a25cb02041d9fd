from fastapi import APIRouter, Depends

from ..auth import verify_shared_secret
from ..schemas import ActionResponse, FlowStart
from ..services import get_services
from ..utils.response import error_response, ok_response

router = APIRouter(tags=["flows"], dependencies=[Depends(verify_shared_secret)])


@router.post("/api/flows", response_model=ActionResponse)
def start_flow(payload: FlowStart) -> dict:
    flow = get_services().flows.start(
        payload.owner_id, payload.protocol, payload.verb, payload.step, **payload.params
    )
    return ok_response("Flow", "Flow dimulai.", {"flow": flow.as_dict()})


@router.get("/api/flows/{flow_id}", response_model=ActionResponse)
def get_flow(flow_id: str) -> dict:
    flow = get_services().flows.get(flow_id)
    if flow is None:
        return error_response("not_found", "Flow", "Flow tidak ditemukan atau sudah kadaluarsa.")
    return ok_response("Flow", flow.step, {"flow": flow.as_dict()})


@router.delete("/api/flows/{flow_id}", response_model=ActionResponse)
def cancel_flow(flow_id: str) -> dict:
    flow = get_services().flows.cancel(flow_id)
    if flow is None:
        return error_response("not_found", "Flow", "Flow tidak ditemukan.")
    return ok_response("Flow", "Flow dibatalkan.")
