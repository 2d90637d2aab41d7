# Overview: Admin authentication against the hosted auth service plus the admin email allow-list.

# backend/marketplace/services/auth_service.py
"""
Admin Authentication

Token issuance and validation are delegated to the hosted auth service.
This module only decides whether a validated user is an admin.

SECURITY:
- The admin_token cookie and the Authorization bearer header are validated
  the same way: the token is resolved to a user by the auth service, then
  the user's email must be on ADMIN_EMAILS.
- The development bypass only applies when APP_ENV is not "production".
"""
from __future__ import annotations

from dataclasses import dataclass

import httpx
from flask import current_app, request


class AuthServiceError(RuntimeError):
    """Auth service unreachable or returned an unexpected response."""


class InvalidCredentialsError(ValueError):
    """Email/password rejected by the auth service."""


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str

    def to_dict(self) -> dict:
        return {"id": self.id, "email": self.email}


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    expires_in: int
    user: AuthUser


class AuthClient:
    """httpx client for the hosted auth service (password grant + user lookup)."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config, transport: httpx.BaseTransport | None = None) -> "AuthClient":
        return cls(
            base_url=config["AUTH_SERVICE_URL"],
            api_key=config["ANON_KEY"] or config["SERVICE_ROLE_KEY"],
            transport=transport,
        )

    def _client(self) -> httpx.Client:
        if not self.base_url:
            raise AuthServiceError("Auth service is not configured. Set AUTH_SERVICE_URL")
        return httpx.Client(
            base_url=self.base_url,
            headers={"apikey": self.api_key},
            timeout=self.timeout,
            transport=self.transport,
        )

    @staticmethod
    def _user(payload: dict) -> AuthUser:
        return AuthUser(id=str(payload.get("id") or ""), email=(payload.get("email") or "").lower())

    def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            with self._client() as client:
                resp = client.post(
                    "/token",
                    params={"grant_type": "password"},
                    json={"email": email, "password": password},
                )
        except httpx.HTTPError as exc:
            raise AuthServiceError(f"Auth service request failed: {exc}") from exc

        if resp.status_code in (400, 401, 403):
            raise InvalidCredentialsError("Invalid email or password")
        if resp.status_code >= 300:
            raise AuthServiceError(f"Auth service returned {resp.status_code}")

        body = resp.json()
        return AuthSession(
            access_token=body["access_token"],
            expires_in=int(body.get("expires_in") or 3600),
            user=self._user(body.get("user") or {}),
        )

    def get_user(self, token: str) -> AuthUser | None:
        """Resolve an access token to its user; None when the token is invalid or expired."""
        try:
            with self._client() as client:
                resp = client.get("/user", headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            raise AuthServiceError(f"Auth service request failed: {exc}") from exc

        if resp.status_code in (401, 403, 404):
            return None
        if resp.status_code >= 300:
            raise AuthServiceError(f"Auth service returned {resp.status_code}")
        return self._user(resp.json())


def get_auth_client() -> AuthClient:
    return current_app.extensions["auth_client"]


def admin_emails() -> set[str]:
    raw = current_app.config.get("ADMIN_EMAILS") or ""
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def is_admin_email(email: str | None) -> bool:
    if not email:
        return False
    return email.strip().lower() in admin_emails()


def should_bypass_auth() -> bool:
    config = current_app.config
    return config.get("APP_ENV") != "production" and bool(config.get("DISABLE_AUTH_IN_DEV"))


def token_from_request() -> str | None:
    """admin_token cookie first, then Authorization: Bearer."""
    token = request.cookies.get(current_app.config["ADMIN_COOKIE_NAME"])
    if token:
        return token
    header = request.headers.get("Authorization") or ""
    if header.startswith("Bearer "):
        return header.split(" ", 1)[1].strip() or None
    return None


def authenticate_request() -> AuthUser | None:
    """The user behind the request's token, or None. Raises AuthServiceError."""
    token = token_from_request()
    if not token:
        return None
    return get_auth_client().get_user(token)


def login_admin(email: str, password: str) -> AuthSession:
    """
    Password sign-in restricted to the allow-list.

    Raises InvalidCredentialsError, PermissionError (not an admin) or
    AuthServiceError.
    """
    if not is_admin_email(email):
        raise PermissionError("Access denied. Admin privileges required.")
    session = get_auth_client().sign_in(email.strip().lower(), password)
    if not is_admin_email(session.user.email):
        raise PermissionError("Access denied. Admin privileges required.")
    current_app.logger.info("Admin %s signed in", session.user.email)
    return session
