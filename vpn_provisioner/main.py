import logging

from fastapi import FastAPI

from .config import get_settings
from .routes.accounts import router as accounts_router
from .routes.expiration import router as expiration_router
from .routes.flows import router as flows_router
from .routes.provision import router as provision_router
from .routes.servers import router as servers_router
from .services import get_services

app = FastAPI(title="vpn-provisioner", version="1.0.0")
app.include_router(provision_router)
app.include_router(servers_router)
app.include_router(accounts_router)
app.include_router(expiration_router)
app.include_router(flows_router)
logger = logging.getLogger("vpn-provisioner")


@app.on_event("startup")
def startup_services() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    services = get_services()
    logger.info(
        "Backend siap | db=%s servers=%s bundle_policy=%s",
        services.settings.database_path,
        len(services.db.list_servers()),
        services.settings.bundle_policy,
    )
    if not settings.internal_shared_secret:
        logger.warning("INTERNAL_SHARED_SECRET kosong, semua endpoint API akan menolak request.")
    stale = services.flows.purge_expired()
    if stale:
        logger.info("Flow kadaluarsa dibersihkan: %s", stale)


@app.get("/health")
def health() -> dict:
    settings = get_settings()
    return {
        "status": "ok",
        "service": "vpn-provisioner",
        "dangerous_actions_enabled": settings.enable_dangerous_actions,
    }
