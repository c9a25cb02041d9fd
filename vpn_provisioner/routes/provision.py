from fastapi import APIRouter, Depends

from ..auth import verify_shared_secret
from ..schemas import ActionRequest, ActionResponse
from ..services import get_services
from ..services.actions import handle_provision

router = APIRouter(tags=["provision"])


@router.post(
    "/api/provision/{protocol}/action",
    dependencies=[Depends(verify_shared_secret)],
    response_model=ActionResponse,
)
async def run_provision_action(protocol: str, payload: ActionRequest) -> dict:
    return await handle_provision(protocol, payload.action, payload.params, get_services())
