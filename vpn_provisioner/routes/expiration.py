from fastapi import APIRouter, Depends

from ..auth import verify_shared_secret
from ..schemas import ActionResponse
from ..services import get_services
from ..utils.response import error_response, ok_response

router = APIRouter(tags=["expiration"])


@router.post(
    "/api/expiration/{sweep}",
    dependencies=[Depends(verify_shared_secret)],
    response_model=ActionResponse,
)
async def run_sweep(sweep: str) -> dict:
    title = "Expiration"
    try:
        reports = await get_services().scanner.run(sweep.strip().lower())
    except ValueError:
        return error_response("unknown_sweep", title, f"Sweep tidak dikenal: {sweep}")
    summary = ", ".join(f"{r.name}={r.done}/{r.candidates}" for r in reports)
    return ok_response(title, summary, {"reports": [r.as_dict() for r in reports]})
