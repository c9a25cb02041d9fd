from typing import Any

from pydantic import BaseModel, Field


class ActionRequest(BaseModel):
    action: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class ActionResponse(BaseModel):
    ok: bool
    code: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


class ServerPayload(BaseModel):
    domain: str = ""
    auth: str = ""
    name: str = ""
    price: int | None = None
    quota_gb: int | None = None
    ip_limit: int | None = None
    account_cap: int | None = None
    isp: str = ""
    location: str = ""

    def params(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class FlowStart(BaseModel):
    owner_id: str = Field(min_length=1)
    protocol: str = Field(min_length=1)
    verb: str = Field(min_length=1)
    step: str = "server"
    params: dict[str, Any] = Field(default_factory=dict)
