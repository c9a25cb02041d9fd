from fastapi import APIRouter, Depends

from ..auth import verify_shared_secret
from ..schemas import ActionResponse, ServerPayload
from ..services import get_services
from ..services.actions import handle_server_add, handle_server_delete, handle_server_update
from ..utils.response import error_response, ok_response

router = APIRouter(tags=["servers"], dependencies=[Depends(verify_shared_secret)])


@router.get("/api/servers")
def list_servers() -> dict:
    servers = get_services().db.list_servers()
    return {"servers": [server.public_dict() for server in servers]}


@router.post("/api/servers", response_model=ActionResponse)
def add_server(payload: ServerPayload) -> dict:
    return handle_server_add(payload.params(), get_services())


@router.get("/api/servers/{server_id}", response_model=ActionResponse)
def get_server(server_id: int) -> dict:
    server = get_services().db.get_server(server_id)
    if server is None:
        return error_response("not_found", "Server", "Server tidak ditemukan.")
    return ok_response("Server", server.name, {"server": server.public_dict()})


@router.patch("/api/servers/{server_id}", response_model=ActionResponse)
def update_server(server_id: int, payload: ServerPayload) -> dict:
    return handle_server_update(server_id, payload.params(), get_services())


@router.delete("/api/servers/{server_id}", response_model=ActionResponse)
def delete_server(server_id: int) -> dict:
    return handle_server_delete(server_id, get_services())
