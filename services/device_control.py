"""HTTP client for the device cloud: account login and remote function calls."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Optional

import httpx
from pydantic import ValidationError

from app.schemas import DeviceCredentials, FunctionCallResult
from services.errors import AuthError, DeviceControlError

logger = logging.getLogger(__name__)

# Public OAuth client the device cloud issues for password logins.
_OAUTH_CLIENT = ("particle", "particle")


def load_credentials(path: Path) -> DeviceCredentials:
    """Read ``{"username": ..., "password": ...}`` from a JSON file."""
    try:
        payload = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise AuthError(f"Could not read device login file {path}: {exc}") from exc
    try:
        return DeviceCredentials.model_validate(payload)
    except ValidationError as exc:
        raise AuthError(f"Device login file {path} is incomplete.") from exc


class DeviceControlClient:
    """Thread-safe wrapper around the device cloud REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        credentials_path: Optional[Path] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._credentials_path = credentials_path
        self._token: Optional[str] = None
        self._token_lock = Lock()

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def close(self) -> None:
        self._client.close()

    def login(self, credentials: DeviceCredentials) -> str:
        try:
            response = self._client.post(
                "/oauth/token",
                auth=_OAUTH_CLIENT,
                data={
                    "grant_type": "password",
                    "username": credentials.username,
                    "password": credentials.password,
                },
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Login request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise AuthError(
                f"Login rejected with status {response.status_code}.",
                status_code=response.status_code,
            )
        token = _json_body(response).get("access_token")
        if not isinstance(token, str) or not token:
            raise AuthError("Login response did not include an access token.")

        with self._token_lock:
            self._token = token
        logger.info("Authenticated with device cloud")
        return token

    def ensure_login(self) -> str:
        """Return the current token, logging in from the credentials file if needed."""
        with self._token_lock:
            token = self._token
        if token is not None:
            return token
        if self._credentials_path is None:
            raise AuthError("No device login configured; dispatch is disabled.")
        return self.login(load_credentials(self._credentials_path))

    def call_function(self, device_id: str, name: str, argument: str) -> FunctionCallResult:
        token = self.ensure_login()
        try:
            response = self._client.post(
                f"/v1/devices/{device_id}/{name}",
                headers={"Authorization": f"Bearer {token}"},
                data={"arg": argument},
            )
        except httpx.TimeoutException as exc:
            raise DeviceControlError(f"Call to {name} on {device_id} timed out.") from exc
        except httpx.HTTPError as exc:
            raise DeviceControlError(f"Call to {name} on {device_id} failed: {exc}") from exc

        if response.status_code == httpx.codes.UNAUTHORIZED:
            with self._token_lock:
                self._token = None
            raise AuthError("Device cloud refused the access token.", status_code=401)
        if response.status_code != httpx.codes.OK:
            detail = _json_body(response).get("error") or response.text.strip()
            raise DeviceControlError(
                f"Call to {name} on {device_id} failed with status "
                f"{response.status_code}: {detail or 'no detail provided.'}",
                status_code=response.status_code,
            )

        try:
            result = FunctionCallResult.model_validate(_json_body(response))
        except ValidationError as exc:
            raise DeviceControlError(f"Unexpected response from {name} on {device_id}.") from exc
        if not result.connected:
            raise DeviceControlError(f"Device {device_id} is not connected.")
        return result


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
