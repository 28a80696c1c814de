from __future__ import annotations

from datetime import timedelta
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator
from starlette.status import HTTP_404_NOT_FOUND

from commerce_gateway.api.deps import settings_dep
from commerce_gateway.auth.context import ACCESS_TOKEN_COOKIE
from commerce_gateway.auth.jwt import JwtConfig, issue_token
from commerce_gateway.auth.models import Principal, RiderPrincipal, UserPrincipal
from commerce_gateway.middleware.cookies import signed_cookie_value
from commerce_gateway.settings import Settings

router = APIRouter(tags=["dev"])


class DevTokenRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=256)
    kind: Literal["user", "rider"] = "user"
    role: str | None = Field(default=None, min_length=1, max_length=64)
    is_approved: bool = False
    ttl_minutes: int = Field(default=60, ge=1, le=24 * 60)
    set_cookie: bool = False

    @model_validator(mode="after")
    def _role_for_users(self) -> DevTokenRequest:
        if self.kind == "user" and not self.role:
            raise ValueError("role is required for user tokens")
        return self

    def principal(self) -> Principal:
        if self.kind == "rider":
            return RiderPrincipal(subject=self.subject, is_approved=self.is_approved)
        return UserPrincipal(subject=self.subject, role=self.role or "")


class DevTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


@router.post("/token", response_model=DevTokenResponse)
async def mint_dev_token(
    body: DevTokenRequest,
    settings: Settings = Depends(settings_dep),
) -> JSONResponse:
    if settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")

    ttl = timedelta(minutes=body.ttl_minutes)
    token = issue_token(cfg=JwtConfig.from_settings(settings), principal=body.principal(), ttl=ttl)
    response = JSONResponse(DevTokenResponse(access_token=token).model_dump())
    if body.set_cookie:
        response.set_cookie(
            ACCESS_TOKEN_COOKIE,
            signed_cookie_value(token, secret=settings.cookie_secret),
            max_age=int(ttl.total_seconds()),
            httponly=True,
            samesite="lax",
        )
    return response
