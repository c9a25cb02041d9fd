from __future__ import annotations

from ..models import AccountRequest, Protocol, ServerTarget, Verb
from ..utils.response import error_response, ok_response, outcome_response
from ..utils.validators import (
    optional_int_param,
    require_param,
    require_positive_int_param,
    require_protocol,
    require_username,
)

VERB_TITLES = {
    Verb.CREATE: "Buat Akun",
    Verb.RENEW: "Perpanjang Akun",
    Verb.DELETE: "Hapus Akun",
    Verb.TRIAL: "Trial Akun",
}


def _parse_verb(action: str) -> Verb | None:
    try:
        return Verb((action or "").strip().lower())
    except ValueError:
        return None


def _build_request(
    verb: Verb, protocol: Protocol, params: dict, server: ServerTarget | None, title: str
) -> tuple[bool, AccountRequest | dict]:
    username = ""
    if verb is not Verb.TRIAL:
        ok_u, user_or_err = require_username(params, title)
        if not ok_u:
            return False, user_or_err
        username = str(user_or_err)

    days = 0
    if verb in {Verb.CREATE, Verb.RENEW}:
        ok_d, days_or_err = require_positive_int_param(params, "days", title, minimum=1)
        if not ok_d:
            return False, days_or_err
        days = int(days_or_err)

    defaults = {
        "quota_gb": server.quota_gb if server else 0,
        "ip_limit": server.ip_limit if server else 0,
        "price": server.price if server else 0,
    }
    values: dict[str, int] = {}
    for key, default in defaults.items():
        ok_v, value_or_err = optional_int_param(params, key, title, default=default)
        if not ok_v:
            return False, value_or_err
        values[key] = int(value_or_err)

    password = ""
    if protocol is Protocol.SSH and verb is Verb.CREATE:
        ok_p, pass_or_err = require_param(params, "password", title)
        if not ok_p:
            return False, pass_or_err
        password = str(pass_or_err)

    return True, AccountRequest(
        username=username,
        days=days,
        quota_gb=values["quota_gb"],
        ip_limit=values["ip_limit"],
        password=password,
        price=values["price"],
        owner_id=str(params.get("owner_id", "")).strip(),
    )


async def handle_provision(protocol_raw: str, action: str, params: dict, services) -> dict:
    settings = services.settings
    verb = _parse_verb(action)
    if verb is None:
        return error_response("unknown_action", "Provisioning", f"Action tidak dikenal: {action}")
    title = VERB_TITLES[verb]

    if not settings.enable_dangerous_actions:
        return error_response("forbidden", title, "Dangerous actions dinonaktifkan via env.")

    ok_p, proto_or_err = require_protocol(protocol_raw, title)
    if not ok_p:
        return proto_or_err
    protocol = proto_or_err

    ok_s, server_id_or_err = require_positive_int_param(params, "server_id", title)
    if not ok_s:
        return server_id_or_err
    server_id = int(server_id_or_err)

    ok_r, request_or_err = _build_request(verb, protocol, params, services.db.get_server(server_id), title)
    if not ok_r:
        return request_or_err
    request = request_or_err

    outcome = await services.provisioning.run(protocol, verb, server_id, request)

    extra = {}
    flow_id = str(params.get("flow_id", "")).strip()
    if flow_id:
        if outcome.actionable:
            # Same flow, back to the username prompt.
            services.flows.advance(flow_id, "username")
        else:
            services.flows.finish(flow_id)
        flow = services.flows.get(flow_id)
        extra["flow_id"] = flow.id if flow else ""
        extra["flow_step"] = flow.step if flow else ""
    return outcome_response(title, outcome, extra)


def _server_from_params(params: dict, title: str) -> tuple[bool, ServerTarget | dict]:
    ok_d, domain_or_err = require_param(params, "domain", title)
    if not ok_d:
        return False, domain_or_err
    ok_a, auth_or_err = require_param(params, "auth", title)
    if not ok_a:
        return False, auth_or_err
    numbers: dict[str, int] = {}
    for key in ("price", "quota_gb", "ip_limit", "account_cap"):
        ok_n, value_or_err = optional_int_param(params, key, title)
        if not ok_n:
            return False, value_or_err
        numbers[key] = int(value_or_err)
    return True, ServerTarget(
        id=None,
        domain=str(domain_or_err),
        auth=str(auth_or_err),
        name=str(params.get("name", "")).strip() or str(domain_or_err),
        isp=str(params.get("isp", "")).strip(),
        location=str(params.get("location", "")).strip(),
        **numbers,
    )


def handle_server_add(params: dict, services) -> dict:
    title = "Server - Tambah"
    ok, server_or_err = _server_from_params(params, title)
    if not ok:
        return server_or_err
    server = server_or_err
    server.id = services.db.add_server(server)
    return ok_response(title, f"Server {server.name} berhasil ditambahkan.", {"server": server.public_dict()})


def handle_server_update(server_id: int, params: dict, services) -> dict:
    title = "Server - Edit"
    if services.db.get_server(server_id) is None:
        return error_response("not_found", title, "Server tidak ditemukan.")
    fields: dict = {}
    for key in ("domain", "auth", "name", "isp", "location"):
        if key in params:
            value = str(params.get(key, "")).strip()
            if key in {"domain", "auth"} and not value:
                return error_response("invalid_param", title, f"Parameter '{key}' tidak boleh kosong.")
            fields[key] = value
    for key in ("price", "quota_gb", "ip_limit", "account_cap"):
        if key in params:
            ok_n, value_or_err = optional_int_param(params, key, title)
            if not ok_n:
                return value_or_err
            fields[key] = int(value_or_err)
    services.db.update_server(server_id, **fields)
    server = services.db.get_server(server_id)
    return ok_response(title, "Server berhasil diperbarui.", {"server": server.public_dict()})


def handle_server_delete(server_id: int, services) -> dict:
    title = "Server - Hapus"
    if not services.settings.enable_dangerous_actions:
        return error_response("forbidden", title, "Dangerous actions dinonaktifkan via env.")
    if not services.db.delete_server(server_id):
        return error_response("not_found", title, "Server tidak ditemukan.")
    return ok_response(title, "Server berhasil dihapus.")
