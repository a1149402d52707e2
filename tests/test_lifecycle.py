from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import pytest

from drivetrack.exceptions import AuthenticationError, NetworkError, SessionInvalidError
from drivetrack.lifecycle import SessionLifecycleController, StartupDecision
from drivetrack.models.bus import BusAssignment
from drivetrack.session import SESSION_STORAGE_KEY, CredentialStore
from drivetrack.storage import MemorySecureStorage


class _Http:
    """Canned backend keyed by endpoint."""

    def __init__(self, responses: dict[str, Any] | None = None, log: list[str] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, dict[str, str], str | None]] = []
        self.log = log if log is not None else []

    async def _answer(self, endpoint: str, form: Mapping[str, str], token: str | None) -> dict[str, Any]:
        self.calls.append((endpoint, dict(form), token))
        self.log.append(f"http:{endpoint}")
        response = self.responses.get(endpoint, {})
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response()
        return response

    async def get_json(self, endpoint: str, *, token: str | None = None) -> dict[str, Any]:
        return await self._answer(endpoint, {}, token)

    async def post_form(self, endpoint: str, form: Mapping[str, str], *, token: str | None = None) -> dict[str, Any]:
        return await self._answer(endpoint, form, token)


class _Transport:
    def __init__(self, log: list[str]) -> None:
        self.log = log
        self.connects = 0

    async def connect(self) -> None:
        self.connects += 1
        self.log.append("transport:connect")

    async def close(self) -> None:
        self.log.append("transport:close")


class _Sharing:
    def __init__(self, log: list[str]) -> None:
        self.log = log
        self.bus: BusAssignment | None = None

    def set_bus_assignment(self, bus: BusAssignment | None) -> None:
        self.bus = bus

    async def stop(self) -> None:
        self.log.append("sharing:stop")


class _LoggingStorage(MemorySecureStorage):
    def __init__(self, log: list[str]) -> None:
        super().__init__()
        self.log = log

    async def delete_item(self, key: str) -> None:
        self.log.append("credentials:clear")
        await super().delete_item(key)


class _BrokenStorage(MemorySecureStorage):
    async def get_item(self, key: str) -> str | None:
        raise OSError("keystore locked")


_BUS_RESPONSE = {"bus_id": 42, "route_name": "Central - Airport"}


def _controller(
    responses: dict[str, Any] | None = None,
    storage: MemorySecureStorage | None = None,
) -> tuple[SessionLifecycleController, CredentialStore, _Http, _Transport, _Sharing, list[str]]:
    log: list[str] = []
    credentials = CredentialStore(storage if storage is not None else _LoggingStorage(log))
    http = _Http(responses, log)
    transport = _Transport(log)
    sharing = _Sharing(log)
    controller = SessionLifecycleController(
        credentials,
        http,
        transport,  # type: ignore[arg-type]
        sharing,  # type: ignore[arg-type]
        logout_timeout=0.05,
    )
    return controller, credentials, http, transport, sharing, log


@pytest.mark.asyncio
async def test_app_start_without_session_forces_login() -> None:
    controller, *_ = _controller()
    assert await controller.on_app_start() is StartupDecision.FORCE_LOGIN


@pytest.mark.asyncio
async def test_app_start_with_fresh_session_resumes() -> None:
    controller, credentials, *_ = _controller()
    await credentials.save("abc123")
    assert await controller.on_app_start() is StartupDecision.RESUME


@pytest.mark.asyncio
async def test_app_start_with_unreadable_storage_forces_login() -> None:
    controller, *_ = _controller(storage=_BrokenStorage())
    assert await controller.on_app_start() is StartupDecision.FORCE_LOGIN


@pytest.mark.asyncio
async def test_login_saves_returned_session() -> None:
    controller, credentials, http, *_ = _controller(
        {"/yus/driver-login": {"login_status": "valid", "session_id": "tok-1"}},
    )

    session = await controller.login(" D-17 ", "secret")

    assert session.token == "tok-1"
    assert await credentials.get_token() == "tok-1"
    assert http.calls == [("/yus/driver-login", {"driver_id": "D-17", "password": "secret"}, None)]


@pytest.mark.asyncio
async def test_rejected_login_stores_nothing() -> None:
    controller, credentials, *_ = _controller(
        {"/yus/driver-login": {"login_status": "invalid", "message": "Wrong password"}},
    )

    with pytest.raises(AuthenticationError, match="Wrong password"):
        await controller.login("D-17", "nope")

    assert await credentials.load() is None


@pytest.mark.asyncio
async def test_password_reset_with_session_signs_in() -> None:
    controller, credentials, *_ = _controller(
        {"/yus/verify-otp-driver-password": {"status": "success", "session_id": "tok-2"}},
    )

    result = await controller.complete_password_reset("D-17", "d@example.com", "new-secret", "123456")

    assert result.success
    assert await credentials.get_token() == "tok-2"


@pytest.mark.asyncio
async def test_bus_assignment_is_fetched_once_and_shared() -> None:
    controller, credentials, http, _transport, sharing, _log = _controller({"/yus/get-allotted-bus": _BUS_RESPONSE})
    await credentials.save("abc123")

    first = await controller.load_bus_assignment()
    second = await controller.load_bus_assignment()

    assert first == second
    assert first.bus_id == "42"
    assert sharing.bus is first
    assert http.calls == [("/yus/get-allotted-bus", {}, "abc123")]

    await controller.load_bus_assignment(refresh=True)
    assert len(http.calls) == 2


@pytest.mark.asyncio
async def test_bus_assignment_requires_session() -> None:
    controller, *_ = _controller({"/yus/get-allotted-bus": _BUS_RESPONSE})

    with pytest.raises(SessionInvalidError):
        await controller.load_bus_assignment()


@pytest.mark.asyncio
async def test_resume_loads_bus_then_connects() -> None:
    controller, credentials, _http, transport, _sharing, log = _controller({"/yus/get-allotted-bus": _BUS_RESPONSE})
    await credentials.save("abc123")

    bus = await controller.resume()

    assert bus.route_name == "Central - Airport"
    assert transport.connects == 1
    assert log[-2:] == ["http:/yus/get-allotted-bus", "transport:connect"]


@pytest.mark.asyncio
async def test_logout_tears_down_in_order() -> None:
    controller, credentials, http, _transport, sharing, log = _controller({"/yus/get-allotted-bus": _BUS_RESPONSE})
    await credentials.save("abc123")
    await controller.load_bus_assignment()
    log.clear()

    await controller.on_logout()

    assert log == ["http:/yus/driver-logout", "sharing:stop", "transport:close", "credentials:clear"]
    assert http.calls[-1] == ("/yus/driver-logout", {}, "abc123")
    assert await credentials.load() is None
    assert controller.bus_assignment is None
    assert sharing.bus is None


@pytest.mark.asyncio
async def test_logout_completes_when_backend_fails() -> None:
    controller, credentials, *_, log = _controller(
        {"/yus/driver-logout": NetworkError("HTTP 500", status_code=500, endpoint="/yus/driver-logout")},
    )
    await credentials.save("abc123")

    await controller.on_logout()

    assert log[-3:] == ["sharing:stop", "transport:close", "credentials:clear"]
    assert await credentials.load() is None


@pytest.mark.asyncio
async def test_logout_does_not_wait_forever_for_backend() -> None:
    async def hang() -> dict[str, Any]:
        await asyncio.sleep(10)
        return {}

    controller, credentials, *_ = _controller({"/yus/driver-logout": hang})
    await credentials.save("abc123")

    await asyncio.wait_for(controller.on_logout(), timeout=1.0)

    assert await credentials.load() is None


@pytest.mark.asyncio
async def test_logout_without_session_skips_backend() -> None:
    controller, _credentials, http, *_, log = _controller()

    await controller.on_logout()

    assert http.calls == []
    assert log == ["sharing:stop", "transport:close", "credentials:clear"]


@pytest.mark.asyncio
async def test_logout_with_corrupt_record_still_clears() -> None:
    controller, credentials, http, *_ = _controller()
    storage = credentials._storage
    await storage.set_item(SESSION_STORAGE_KEY, "{broken")

    await controller.on_logout()

    assert http.calls == []
    assert await storage.get_item(SESSION_STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_account_deletion_requires_session() -> None:
    controller, credentials, http, *_ = _controller()
    with pytest.raises(SessionInvalidError):
        await controller.request_account_deletion()

    await credentials.save("abc123")
    await controller.request_account_deletion()
    assert http.calls == [("/yus/driver-delete-account", {}, "abc123")]


@pytest.mark.asyncio
async def test_logout_clears_credentials_when_teardown_step_fails() -> None:
    controller, credentials, _http, transport, sharing, log = _controller()
    await credentials.save("abc123")

    async def failing_stop() -> None:
        log.append("sharing:stop")
        raise RuntimeError("task manager gone")

    async def failing_close() -> None:
        log.append("transport:close")
        raise ValueError("reader crashed")

    sharing.stop = failing_stop  # type: ignore[method-assign]
    transport.close = failing_close  # type: ignore[method-assign]

    await controller.on_logout()

    assert log[-3:] == ["sharing:stop", "transport:close", "credentials:clear"]
    assert await credentials.load() is None
