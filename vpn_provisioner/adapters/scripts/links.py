from __future__ import annotations

import base64
import json
import urllib.parse

SS_METHOD = "aes-128-gcm"

PUBLIC_PATHS = {
    "vless": {"ws": "/vless", "grpc": "vless-grpc"},
    "vmess": {"ws": "/vmess", "grpc": "vmess-grpc"},
    "trojan": {"ws": "/trojan-ws", "grpc": "trojan-grpc"},
    "shadowsocks": {"ws": "/ss-ws", "grpc": "ss-grpc"},
}


def build_links(proto: str, username: str, cred: str, domain: str) -> dict[str, str]:
    def fragment() -> str:
        return urllib.parse.quote(username)

    def query(net: str, val: str, **extra: str) -> str:
        q = dict(extra)
        q.update({"security": "tls", "type": net, "sni": domain})
        if net == "ws":
            q["host"] = domain
            q["path"] = val or "/"
        elif net == "grpc" and val:
            q["serviceName"] = val
        return urllib.parse.urlencode(q)

    def vless_link(net: str, val: str) -> str:
        return f"vless://{cred}@{domain}:443?{query(net, val, encryption='none')}#{fragment()}"

    def trojan_link(net: str, val: str) -> str:
        return f"trojan://{cred}@{domain}:443?{query(net, val)}#{fragment()}"

    def ss_link(net: str, val: str) -> str:
        userinfo = base64.urlsafe_b64encode(f"{SS_METHOD}:{cred}".encode()).decode().rstrip("=")
        return f"ss://{userinfo}@{domain}:443?{query(net, val)}#{fragment()}"

    def vmess_link(net: str, val: str) -> str:
        obj = {
            "v": "2",
            "ps": username,
            "add": domain,
            "port": "443",
            "id": cred,
            "aid": "0",
            "net": net,
            "type": "none",
            "host": domain,
            "tls": "tls",
            "sni": domain,
        }
        if net == "ws":
            obj["path"] = val or "/"
        elif net == "grpc":
            obj["path"] = ""
            obj["type"] = "gun"
            obj["serviceName"] = val
        raw = json.dumps(obj, separators=(",", ":"))
        return "vmess://" + base64.b64encode(raw.encode()).decode()

    builders = {
        "vless": vless_link,
        "vmess": vmess_link,
        "trojan": trojan_link,
        "shadowsocks": ss_link,
    }
    builder = builders.get(proto)
    if builder is None:
        return {}
    paths = PUBLIC_PATHS.get(proto, {})
    return {net: builder(net, paths.get(net, "")) for net in ("ws", "grpc")}
