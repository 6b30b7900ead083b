"""Pydantic schemas for API Requests."""

from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field

from requiety.schemas.assertions import Assertion

HTTPMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
BodyType = Literal["none", "raw", "text", "json", "form-urlencoded", "form-data", "graphql"]
AuthType = Literal["none", "bearer", "basic", "oauth2"]


class RequestHeader(BaseModel):
    """Request header row."""
    name: str = ""
    value: str = ""
    enabled: bool = True
    is_auto: bool = False  # Computed by the engine, e.g. Host
    description: str | None = None


class RequestBodyParam(BaseModel):
    """Form parameter for form-urlencoded and form-data bodies."""
    name: str = ""
    value: str = ""
    enabled: bool = True


class GraphQLBody(BaseModel):
    """GraphQL query with its variables kept as JSON text."""
    query: str = ""
    variables: str = ""


class RequestBody(BaseModel):
    """Request body configuration."""
    type: BodyType = "none"
    text: str | None = None  # json, raw, text
    params: list[RequestBodyParam] = Field(default_factory=list)  # form-urlencoded, form-data
    graphql: GraphQLBody | None = None


class OAuth2Config(BaseModel):
    """OAuth 2.0 settings. Token acquisition happens outside the engine."""
    grant_type: Literal["authorization_code", "client_credentials", "implicit", "password"] = "client_credentials"
    auth_url: str = ""
    token_url: str = ""
    client_id: str = ""
    client_secret: str | None = None
    redirect_uri: str = ""
    scope: str | None = None


class Authentication(BaseModel):
    """Request authentication."""
    type: AuthType = "none"
    token: str | None = None  # bearer
    username: str | None = None  # basic
    password: str | None = None  # basic
    oauth2: OAuth2Config | None = None


class APIRequestCreate(BaseModel):
    """Schema for creating an API request."""
    parent_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    sort_order: int = 0
    method: HTTPMethod = "GET"
    url: str = Field("", max_length=2000)
    headers: list[RequestHeader] = Field(default_factory=list)
    body: RequestBody = Field(default_factory=RequestBody)
    authentication: Authentication = Field(default_factory=Authentication)
    assertions: list[Assertion] = Field(default_factory=list)
    pre_request_script: str | None = None
    post_request_script: str | None = None


class APIRequestSchema(APIRequestCreate):
    """Stored request definition as consumed by the execution engine."""
    id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
