"""User-facing texts for provisioning results (Indonesian, Telegram Markdown)."""

from __future__ import annotations

from ..scripts.common import web_url

DIVIDER = "━━━━━━━━━━━━━━━━━━━━"

MSG_INVALID_USERNAME = "❌ Username tidak valid. Gunakan hanya huruf dan angka tanpa spasi."
MSG_ALREADY_EXISTS = "❌ Username sudah digunakan. Gunakan username lain."
MSG_RENEW_NOT_FOUND = "❌ Username tidak ditemukan di server."
MSG_DELETE_NOT_FOUND = "⚠️ Username tidak ditemukan di server (mungkin sudah dihapus)."
MSG_SERVER_NOT_FOUND = "❌ Server tidak ditemukan."
MSG_SERVER_FULL = "❌ Server penuh. Batas pembuatan akun di server ini sudah tercapai."

SSH_PORTS = [
    ("SSH WS TLS", "443"),
    ("SSH WS HTTP", "80"),
    ("OpenSSH", "22"),
    ("Dropbear", "109, 443"),
    ("SlowDNS", "53, 443, 22"),
    ("OpenVPN", "1194, 2200, 443"),
    ("UDP Custom", "1-65535"),
]

PROTOCOL_LABELS = {
    "ssh": "SSH",
    "vmess": "VMESS",
    "vless": "VLESS",
    "trojan": "TROJAN",
    "shadowsocks": "SHADOWSOCKS",
    "3in1": "3IN1 (VMESS + VLESS + TROJAN)",
}


def label(proto: str) -> str:
    return PROTOCOL_LABELS.get(proto, proto.upper())


def failure(message: str) -> str:
    text = (message or "").strip() or "Gagal memproses permintaan."
    if text.startswith("❌") or text.startswith("⚠️"):
        return text
    return f"❌ {text}"


def fmt_price(price: int) -> str:
    return "Rp " + f"{max(0, int(price)):,}".replace(",", ".")


def fmt_quota(quota_gb: int) -> str:
    return "Unlimited" if int(quota_gb) <= 0 else f"{int(quota_gb)} GB"


def _kv(rows: list[tuple[str, str]]) -> list[str]:
    return [f"{name.ljust(11)} : {value}" for name, value in rows]


def _footer(store_name: str) -> list[str]:
    return [DIVIDER, f"Terima kasih telah menggunakan layanan {store_name}."]


def ssh_account_text(username: str, password: str, domain: str, expires: str, ip_limit: int) -> str:
    lines = ["=== SSH ACCOUNT INFO ==="]
    lines.extend(
        _kv(
            [
                ("Domain", domain),
                ("Username", username),
                ("Password", password),
                ("Expired On", expires),
                ("IP Limit", str(ip_limit)),
            ]
        )
    )
    lines.append("")
    lines.append("Ports:")
    lines.extend(f"  {name.ljust(12)}: {ports}" for name, ports in SSH_PORTS)
    lines.append("")
    lines.append(f"Payload WS  : GET / HTTP/1.1[crlf]Host: {domain}[crlf]Upgrade: websocket[crlf][crlf]")
    return "\n".join(lines)


def xray_account_text(
    proto: str,
    username: str,
    cred: str,
    domain: str,
    expires: str,
    quota_gb: int,
    ip_limit: int,
    links: dict[str, str],
) -> str:
    lines = [f"=== {label(proto)} ACCOUNT INFO ==="]
    rows = [("Domain", domain), ("Username", username), ("Protocol", proto)]
    rows.append(("UUID", cred) if proto in {"vmess", "vless"} else ("Password", cred))
    rows.extend(
        [
            ("Quota", fmt_quota(quota_gb)),
            ("IP Limit", str(ip_limit)),
            ("Valid Until", expires),
        ]
    )
    lines.extend(_kv(rows))
    lines.extend(
        [
            "",
            "Links Import:",
            f"  WebSocket : {links.get('ws', '-')}",
            f"  gRPC      : {links.get('grpc', '-')}",
        ]
    )
    return "\n".join(lines)


def created(
    proto: str,
    account_text: str,
    domain: str,
    web_file: str,
    days: int,
    price: int,
    store_name: str,
) -> str:
    lines = [f"✅ *Akun {label(proto)} berhasil dibuat!*", DIVIDER, "```", account_text, "```", DIVIDER]
    summary = [("Masa Aktif", f"{days} hari")]
    if price:
        summary.append(("Harga", fmt_price(price)))
    lines.extend(_kv(summary))
    if web_file:
        lines.append(f"🔗 Detail: {web_url(domain, web_file)}")
    if proto == "ssh":
        lines.append(f"📦 OVPN   : {web_url(domain, 'allovpn.zip')}")
    lines.extend(_footer(store_name))
    return "\n".join(lines)


def renewed(
    proto: str,
    username: str,
    domain: str,
    old_expiry: str,
    new_expiry: str,
    days: int,
    quota_gb: int | None,
    ip_limit: int,
    store_name: str,
) -> str:
    rows = [
        ("Username", username),
        ("Domain", domain),
        ("Expired Lama", old_expiry or "-"),
        ("Expired Baru", new_expiry),
        ("Tambahan", f"{days} hari"),
    ]
    if quota_gb is not None:
        rows.append(("Quota", fmt_quota(quota_gb)))
    rows.append(("IP Limit", str(ip_limit)))
    lines = [f"✅ *Perpanjangan {label(proto)} berhasil!*", DIVIDER]
    lines.extend(_kv(rows))
    lines.extend(_footer(store_name))
    return "\n".join(lines)


def deleted(proto: str, username: str, domain: str) -> str:
    return f"✅ Akun {label(proto)} *{username}* berhasil dihapus dari {domain}."


def trial(proto: str, account_text: str, minutes: int, expiration: str, store_name: str) -> str:
    lines = [f"✅ *Trial {label(proto)} berhasil dibuat!*", DIVIDER, "```", account_text, "```", DIVIDER]
    lines.extend(_kv([("Durasi", f"{minutes} menit"), ("Berakhir", expiration or "-")]))
    lines.append("Akun trial dihapus otomatis oleh server setelah masa berlaku habis.")
    lines.extend(_footer(store_name))
    return "\n".join(lines)


def remote_error(reason_text: str) -> str:
    return failure(f"Gagal memproses akun di server: {reason_text or 'alasan tidak diketahui'}")


def bundle_status_lines(results: list[tuple[str, bool, str]]) -> list[str]:
    out = []
    for proto, ok, message in results:
        mark = "✅" if ok else "❌"
        detail = "" if ok else f" ({message.lstrip('❌⚠️ ').splitlines()[0]})"
        out.append(f"{mark} {label(proto)}{detail}")
    return out
