from fastapi import APIRouter, Depends

from ..auth import verify_shared_secret
from ..models import Protocol
from ..services import get_services
from ..services.expiration import days_until
from ..services.reconciliation import index_protocols

router = APIRouter(tags=["accounts"], dependencies=[Depends(verify_shared_secret)])


@router.get("/api/accounts")
def list_accounts(owner_id: str | None = None, status: str | None = None) -> dict:
    services = get_services()
    records = services.db.list_accounts(owner_id=owner_id or None, status=status or None)
    today = services.today()
    accounts = []
    for record in records:
        item = record.as_dict()
        item["days_left"] = days_until(record.expired_at, today)
        accounts.append(item)
    return {"accounts": accounts}


@router.get("/api/accounts/exists")
def account_exists(username: str, protocol: str) -> dict:
    proto = Protocol.parse(protocol)
    if proto is None:
        return {"exists": False, "username": username, "protocol": protocol}
    db = get_services().db
    # A bundle name is taken when any of its member protocols holds it.
    exists = any(db.active_exists(username, member) for member in index_protocols(proto.value))
    return {"exists": exists, "username": username, "protocol": proto.value}
