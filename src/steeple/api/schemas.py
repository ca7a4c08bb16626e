"""Pydantic response schemas for the Steeple API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


class McpEndpointInfo(BaseModel):
    endpoint: str
    transport: str = "streamable-http"
    authenticated: bool = False


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource metadata."""

    resource: str
    authorization_servers: list[str]
    bearer_methods_supported: list[str] = Field(default_factory=lambda: ["header"])
    scopes_supported: list[str] = Field(default_factory=list)


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    response_types_supported: list[str] = Field(default_factory=lambda: ["code"])
    grant_types_supported: list[str] = Field(default_factory=lambda: ["authorization_code"])
    code_challenge_methods_supported: list[str] = Field(
        default_factory=lambda: ["S256", "plain"],
    )
    token_endpoint_auth_methods_supported: list[str] = Field(
        default_factory=lambda: ["none"],
    )
    scopes_supported: list[str] = Field(default_factory=list)
