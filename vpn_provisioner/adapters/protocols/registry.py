from __future__ import annotations

from datetime import date
from types import MappingProxyType
from typing import Callable, Mapping, Union

from ...models import Protocol
from .bundle import BundleAdapter
from .ssh import SshAdapter
from .xray import XrayAdapter

Adapter = Union[SshAdapter, XrayAdapter, BundleAdapter]

XRAY_VARIANTS = (Protocol.VMESS, Protocol.VLESS, Protocol.TROJAN, Protocol.SHADOWSOCKS)


def build_adapters(shell, settings, today: Callable[[], date] | None = None) -> Mapping[Protocol, Adapter]:
    """Closed table of adapters, one per Protocol member."""
    xray = {proto: XrayAdapter(proto, shell, settings, today) for proto in XRAY_VARIANTS}
    adapters: dict[Protocol, Adapter] = {Protocol.SSH: SshAdapter(shell, settings, today)}
    adapters.update(xray)
    adapters[Protocol.BUNDLE] = BundleAdapter(xray, settings, policy=settings.bundle_policy)

    missing = [p.value for p in Protocol if p not in adapters]
    if missing:
        raise RuntimeError(f"no adapter for: {', '.join(missing)}")
    return MappingProxyType(adapters)
