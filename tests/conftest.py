from __future__ import annotations

import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from app.schemas import DeviceCredentials
from services.device_control import DeviceControlClient


class FakeDeviceCloud:
    """Scriptable stand-in for the device cloud REST API."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, str]] = []
        self.logins = 0
        self.login_status = 200
        self.function_status = 200
        self.function_body: Dict[str, object] = {
            "id": "device",
            "name": "device",
            "connected": True,
            "return_value": 1,
        }
        self.on_call: Optional[Callable[[], None]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = dict(httpx.QueryParams(request.content.decode()))
        if request.url.path == "/oauth/token":
            self.logins += 1
            if self.login_status != 200:
                return httpx.Response(self.login_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "token-123", "expires_in": 7776000})

        parts = request.url.path.strip("/").split("/")
        self.calls.append(
            {
                "device_id": parts[2],
                "function": parts[3],
                "arg": form.get("arg", ""),
                "authorization": request.headers.get("Authorization", ""),
            }
        )
        if self.on_call is not None:
            self.on_call()
        if self.function_status != 200:
            return httpx.Response(self.function_status, json={"error": "Timed out."})
        return httpx.Response(200, content=json.dumps(self.function_body))

    def client(self, credentials_path=None, logged_in: bool = True) -> DeviceControlClient:
        client = DeviceControlClient(
            base_url="https://device-cloud.test",
            timeout=2.0,
            credentials_path=credentials_path,
            transport=httpx.MockTransport(self.handler),
        )
        if logged_in:
            client.login(DeviceCredentials(username="ops@example.com", password="secret"))
        return client


@pytest.fixture
def device_cloud() -> FakeDeviceCloud:
    return FakeDeviceCloud()


@pytest.fixture
def login_file(tmp_path):
    path = tmp_path / "device_login.json"
    path.write_text(json.dumps({"username": "ops@example.com", "password": "secret"}))
    return path
