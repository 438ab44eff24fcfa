"""
stepchain Test Configuration and Fixtures

Shared protocols:
- auth: login -> profile (mapped), the basic forwarding case
- diamond: C gated on B but also reading a field from A
- oauth: authorization-code flow built from dependent steps
"""

from typing import Annotated, List, Literal, Optional, Union

import pytest
from pydantic import BaseModel, Field, create_model

from stepchain.protocol import (
    MockExecutor,
    dependent_step,
    from_step,
    mapped_step,
    never,
    protocol,
    step,
)


# =============================================================================
# AUTH PROTOCOL
# =============================================================================

class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str
    userId: str


class ProfileRequest(BaseModel):
    token: str
    fields: List[str]


class ProfileResponse(BaseModel):
    name: str
    email: str


def build_auth_protocol():
    login = step(name="login", request=LoginRequest, response=LoginResponse)
    profile = mapped_step(
        name="profile",
        depends_on="login",
        request_mapping={"token": from_step("login", "token")},
        request_schema=ProfileRequest,
        response=ProfileResponse,
        description="Fetch the logged-in user's profile",
    )
    return protocol(
        name="TestAuth",
        initial="login",
        terminal=["profile"],
        steps={"login": login, "profile": profile},
    )


@pytest.fixture
def auth_protocol():
    return build_auth_protocol()


@pytest.fixture
def auth_executor():
    return MockExecutor({
        "login": {"token": "tok-123", "userId": "u-1"},
        "profile": {"name": "Ada", "email": "ada@example.com"},
    })


# =============================================================================
# DIAMOND PROTOCOL
# =============================================================================

class EmptyRequest(BaseModel):
    pass


class AResponse(BaseModel):
    id: str


class BResponse(BaseModel):
    value: str


class CRequest(BaseModel):
    a_id: str
    b_value: str


class CResponse(BaseModel):
    ok: bool


def build_diamond_protocol():
    return protocol(
        name="Diamond",
        initial="a",
        terminal=["c"],
        steps=[
            step(name="a", request=EmptyRequest, response=AResponse),
            step(name="b", request=EmptyRequest, response=BResponse),
            mapped_step(
                name="c",
                depends_on="b",
                request_mapping={
                    "b_value": from_step("b", "value"),
                    "a_id": from_step("a", "id"),
                },
                request_schema=CRequest,
                response=CResponse,
            ),
        ],
    )


@pytest.fixture
def diamond_protocol():
    return build_diamond_protocol()


@pytest.fixture
def diamond_executor():
    return MockExecutor({
        "a": {"id": "a-1"},
        "b": {"value": "b-1"},
        "c": {"ok": True},
    })


# =============================================================================
# OAUTH 2.0 AUTHORIZATION CODE PROTOCOL
# =============================================================================

class AuthorizeRequest(BaseModel):
    response_type: Literal["code"]
    client_id: str
    redirect_uri: Optional[str] = None
    scope: Optional[str] = None
    state: str


class AuthorizeSuccess(BaseModel):
    type: Literal["success"]
    code: str
    state: str


class AuthorizeError(BaseModel):
    type: Literal["error"]
    error: Literal["invalid_request", "access_denied", "server_error"]
    error_description: Optional[str] = None


AuthorizeResponse = Annotated[Union[AuthorizeSuccess, AuthorizeError], Field(discriminator="type")]


class TokenSuccess(BaseModel):
    type: Literal["success"]
    access_token: str
    token_type: Literal["Bearer"]
    expires_in: int = Field(gt=0)
    refresh_token: Optional[str] = None


class TokenError(BaseModel):
    type: Literal["error"]
    error: Literal["invalid_request", "invalid_grant", "invalid_client"]
    error_description: Optional[str] = None


ExchangeResponse = Annotated[Union[TokenSuccess, TokenError], Field(discriminator="type")]


class RevokeResponse(BaseModel):
    revoked: Literal[True]


def exchange_request(prev):
    if prev.type != "success":
        return never()
    return create_model(
        "ExchangeRequest",
        grant_type=(Literal["authorization_code"], ...),
        code=(Literal[prev.code], ...),
        client_id=(str, ...),
        client_secret=(str, ...),
    )


def refresh_request(prev):
    if prev.type != "success" or not prev.refresh_token:
        return never()
    return create_model(
        "RefreshRequest",
        grant_type=(Literal["refresh_token"], ...),
        refresh_token=(Literal[prev.refresh_token], ...),
        client_id=(str, ...),
    )


def revoke_request(prev):
    if prev.type != "success":
        return never()
    return create_model(
        "RevokeRequest",
        token=(str, ...),
        client_id=(str, ...),
    )


def build_oauth_protocol():
    return protocol(
        name="OAuth2AuthorizationCode",
        description="OAuth 2.0 Authorization Code Grant (RFC 6749 Section 4.1)",
        initial="authorize",
        terminal=["revoke"],
        steps=[
            step(
                name="authorize",
                description="Redirect user to authorization server for authentication",
                request=AuthorizeRequest,
                response=AuthorizeResponse,
            ),
            dependent_step(
                name="exchange",
                depends_on="authorize",
                description="Exchange authorization code for access token",
                request=exchange_request,
                response=ExchangeResponse,
            ),
            dependent_step(
                name="refresh",
                depends_on="exchange",
                request=refresh_request,
                response=ExchangeResponse,
            ),
            dependent_step(
                name="revoke",
                depends_on="exchange",
                request=revoke_request,
                response=RevokeResponse,
            ),
        ],
    )


@pytest.fixture
def oauth_protocol():
    return build_oauth_protocol()


@pytest.fixture
def oauth_executor():
    return MockExecutor({
        "authorize": {"type": "success", "code": "auth-code-1", "state": "xyz"},
        "exchange": {
            "type": "success",
            "access_token": "access-1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "refresh-1",
        },
        "refresh": {
            "type": "success",
            "access_token": "access-2",
            "token_type": "Bearer",
            "expires_in": 3600,
        },
        "revoke": {"revoked": True},
    })
