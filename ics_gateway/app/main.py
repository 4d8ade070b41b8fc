from __future__ import annotations

import logging
import os
from typing import Any, Callable, NoReturn

from fastapi import FastAPI, HTTPException, Response

from .dispatcher import (
    ActionIntent,
    DeviceDim,
    DeviceOff,
    DeviceOn,
    Dispatcher,
    InvalidArgument,
    ScenePlay,
    SceneStop,
)
from .hub import Hub, HubError, HubFactory, HubRecord, list_devices, list_rooms, list_scenes, load_hub_factory
from .session import (
    HubCallFailed,
    HubTimeout,
    NotAuthenticated,
    SessionCoordinator,
    SessionError,
    SessionReset,
)
from .settings import Settings, load_settings, read_options
from .store import CredentialStore, Credentials

_LOGGER = logging.getLogger("ics_gateway")
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

GATEWAY_VERSION = "0.1.0"


def _configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    for name in (
        "ics_gateway",
        "ics_session",
        "ics_dispatcher",
        "ics_hub",
        "ics_store",
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
    ):
        logging.getLogger(name).setLevel(level)


def _unconfigured_hub_factory(reason: str) -> HubFactory:
    def _factory(identifier: str, secret: str) -> Hub:
        raise HubError(f"no hub driver available: {reason}")

    return _factory


def _parse_login(payload: Any) -> Credentials:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="body must be a JSON object")
    # email/password are the hub account field names, accepted as aliases.
    identifier = payload.get("identifier", payload.get("email"))
    secret = payload.get("secret", payload.get("password"))
    missing = []
    if not isinstance(identifier, str) or not identifier.strip():
        missing.append("identifier")
    if not isinstance(secret, str) or not secret:
        missing.append("secret")
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing: {', '.join(missing)}")
    return Credentials(identifier=identifier.strip(), secret=secret)


def _parse_device_state(device_id: int, payload: Any) -> ActionIntent:
    # {"state": "On"} | {"state": "Off"} | {"state": {"Dim": level}}
    state = payload.get("state") if isinstance(payload, dict) else None
    if isinstance(state, str):
        s = state.strip().lower()
        if s == "on":
            return DeviceOn(device_id)
        if s == "off":
            return DeviceOff(device_id)
    elif isinstance(state, dict) and len(state) == 1:
        key, level = next(iter(state.items()))
        if str(key).strip().lower() == "dim":
            return DeviceDim(device_id, level)
    raise HTTPException(status_code=400, detail='state must be "On", "Off" or {"Dim": level}')


def _parse_scene_state(scene_id: int, payload: Any) -> ActionIntent:
    state = payload.get("state") if isinstance(payload, dict) else None
    s = state.strip().lower() if isinstance(state, str) else ""
    if s == "play":
        return ScenePlay(scene_id)
    if s == "stop":
        return SceneStop(scene_id)
    raise HTTPException(status_code=400, detail='state must be "Play" or "Stop"')


def _raise_session_error(err: SessionError) -> NoReturn:
    if isinstance(err, NotAuthenticated):
        status, code = 500, "not_authenticated"
    elif isinstance(err, HubTimeout):
        status, code = 504, "hub_timeout"
    elif isinstance(err, SessionReset):
        status, code = 500, "session_reset"
    elif isinstance(err, HubCallFailed):
        status, code = 500, "hub_error"
    else:
        status, code = 500, "session_error"
    raise HTTPException(status_code=status, detail={"error": code, "message": str(err)}) from err


def create_app(*, settings: Settings | None = None, hub_factory: HubFactory | None = None) -> FastAPI:
    api = FastAPI(title="ICS gateway", version=GATEWAY_VERSION)

    if settings is None:
        settings = load_settings(read_options())
    api.state.settings = settings
    _configure_logging(settings.debug)

    if hub_factory is None:
        try:
            hub_factory = load_hub_factory(settings.hub.factory)
        except ValueError as e:
            _LOGGER.error("Hub driver not loaded (%s); every login will fail", e)
            hub_factory = _unconfigured_hub_factory(str(e))

    store = CredentialStore(settings.credentials_path)
    api.state.store = store

    coordinator = SessionCoordinator(
        hub_factory=hub_factory,
        store=store,
        hub_timeout_s=settings.hub.timeout_s,
    )
    api.state.coordinator = coordinator

    dispatcher = Dispatcher(dim_min=settings.hub.dim_min, dim_max=settings.hub.dim_max)
    api.state.dispatcher = dispatcher

    @api.on_event("startup")
    async def _startup() -> None:
        # Runs before the first request is served.
        restored = await coordinator.restore()
        _LOGGER.info("ICS gateway %s ready (session %s)", GATEWAY_VERSION, "restored" if restored else coordinator.state.value)

    @api.on_event("shutdown")
    async def _shutdown() -> None:
        coordinator.close()

    async def _listing(fetch: Callable[[Hub], list[HubRecord]]) -> list[dict[str, Any]]:
        try:
            records = await coordinator.with_session(fetch)
        except SessionError as e:
            _raise_session_error(e)
        return [r.as_json() for r in records]

    async def _act(intent: ActionIntent) -> Response:
        try:
            op = dispatcher.bind(intent)
        except InvalidArgument as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        try:
            await coordinator.with_session(op)
        except SessionError as e:
            _raise_session_error(e)
        return Response(status_code=200)

    @api.get("/health")
    async def health():
        return {"status": "ok", "session": coordinator.state.value, "last_error": coordinator.last_error}

    @api.post("/login")
    async def login(payload: dict[str, Any]):
        credentials = _parse_login(payload)
        try:
            accepted = await coordinator.login(credentials)
        except HubTimeout as e:
            raise HTTPException(status_code=504, detail={"error": "hub_timeout", "message": str(e)}) from e
        except HubError as e:
            raise HTTPException(status_code=502, detail={"error": "hub_error", "message": str(e)}) from e
        if not accepted:
            return Response(status_code=403)
        return Response(status_code=200)

    @api.get("/devices")
    async def devices():
        return await _listing(list_devices)

    @api.get("/rooms")
    async def rooms():
        return await _listing(list_rooms)

    @api.get("/scenes")
    async def scenes():
        return await _listing(list_scenes)

    @api.post("/devices/{device_id}")
    async def control_device(device_id: int, payload: dict[str, Any]):
        return await _act(_parse_device_state(device_id, payload))

    @api.post("/scenes/{scene_id}")
    async def control_scene(scene_id: int, payload: dict[str, Any]):
        return await _act(_parse_scene_state(scene_id, payload))

    return api


def main() -> None:
    import uvicorn

    app = create_app()
    settings: Settings = app.state.settings
    uvicorn.run(app, host=settings.server.host, port=settings.server.port, log_level="debug" if settings.debug else "info")


if __name__ == "__main__":
    main()
