"""Pytest configuration and fixtures for the ICS gateway tests."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from ics_gateway.app.main import create_app
from ics_gateway.app.session import SessionCoordinator
from ics_gateway.app.settings import Settings, load_settings
from ics_gateway.app.store import CredentialStore, Credentials

VALID_IDENTIFIER = "a@b.com"
VALID_SECRET = "x"

SAMPLE_DEVICES = [
    {"id": 7, "name": "Kitchen spots", "type": "dimmer"},
    {"id": 12, "name": "Garden socket", "type": "switch"},
]
SAMPLE_ROOMS = [{"id": 1, "name": "Living room"}]
SAMPLE_SCENES = [{"id": 3, "name": "Movie night"}, {"id": 4, "name": "All off"}]


class HubTracker:
    """Records every hub call and how many ran at the same time.

    Shared by all hubs built by one factory so overlapping calls are caught
    even across replaced handles.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.delay_s = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls: list[tuple[Any, ...]] = []

    @contextmanager
    def call(self, name: str, *args: Any) -> Iterator[None]:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.calls.append((name, *args))
            overlapping = self.in_flight > 1
        try:
            if overlapping:
                raise AssertionError(f"hub call {name} overlapped another hub call")
            if self.delay_s:
                time.sleep(self.delay_s)
            yield
        finally:
            with self._lock:
                self.in_flight -= 1

    def count(self, name: str, *args: Any) -> int:
        return sum(1 for c in self.calls if c == (name, *args))


class FakeHub:
    """In-memory stand-in for the hub driver."""

    def __init__(self, factory: FakeHubFactory, identifier: str, secret: str) -> None:
        self._factory = factory
        self.identifier = identifier
        self.secret = secret

    def _run(self, name: str, *args: Any) -> Any:
        with self._factory.tracker.call(name, *args):
            error = self._factory.errors.get(name)
            if error is not None:
                raise error
            return None

    def login(self) -> bool:
        self._run("login", self.identifier)
        return (self.identifier, self.secret) == self._factory.valid

    def devices(self) -> list[dict[str, Any]]:
        self._run("devices")
        return [dict(d) for d in self._factory.devices]

    def rooms(self) -> list[dict[str, Any]]:
        self._run("rooms")
        return [dict(r) for r in self._factory.rooms]

    def scenes(self) -> list[dict[str, Any]]:
        self._run("scenes")
        return [dict(s) for s in self._factory.scenes]

    def turn_on(self, device_id: int) -> None:
        self._run("turn_on", device_id)

    def turn_off(self, device_id: int) -> None:
        self._run("turn_off", device_id)

    def dim(self, device_id: int, level: int) -> None:
        self._run("dim", device_id, level)

    def start_scene(self, scene_id: int) -> None:
        self._run("start_scene", scene_id)

    def stop_scene(self, scene_id: int) -> None:
        self._run("stop_scene", scene_id)


class FakeHubFactory:
    def __init__(self, tracker: HubTracker) -> None:
        self.tracker = tracker
        self.valid = (VALID_IDENTIFIER, VALID_SECRET)
        self.devices = list(SAMPLE_DEVICES)
        self.rooms = list(SAMPLE_ROOMS)
        self.scenes = list(SAMPLE_SCENES)
        self.errors: dict[str, BaseException] = {}
        self.created: list[FakeHub] = []

    def __call__(self, identifier: str, secret: str) -> FakeHub:
        hub = FakeHub(self, identifier, secret)
        self.created.append(hub)
        return hub


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the tests away from /data and from the caller's environment."""
    monkeypatch.delenv("ICS_GATEWAY_CREDENTIALS", raising=False)
    monkeypatch.setenv("ICS_GATEWAY_OPTIONS", str(tmp_path / "options.json"))


@pytest.fixture
def tracker() -> HubTracker:
    return HubTracker()


@pytest.fixture
def hub_factory(tracker: HubTracker) -> FakeHubFactory:
    return FakeHubFactory(tracker)


@pytest.fixture
def credentials_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "credentials.json"


@pytest.fixture
def store(credentials_path: Path) -> CredentialStore:
    return CredentialStore(str(credentials_path))


@pytest.fixture
def valid_credentials() -> Credentials:
    return Credentials(identifier=VALID_IDENTIFIER, secret=VALID_SECRET)


@pytest.fixture
def coordinator(hub_factory: FakeHubFactory, store: CredentialStore) -> Iterator[SessionCoordinator]:
    coord = SessionCoordinator(hub_factory=hub_factory, store=store, hub_timeout_s=5.0)
    yield coord
    coord.close()


@pytest.fixture
def settings(credentials_path: Path) -> Settings:
    return load_settings(
        {
            "credentials_path": str(credentials_path),
            "hub": {"timeout_s": 5, "dim_min": 0, "dim_max": 15},
        }
    )


@pytest.fixture
def client(settings: Settings, hub_factory: FakeHubFactory) -> Iterator[TestClient]:
    app = create_app(settings=settings, hub_factory=hub_factory)
    with TestClient(app) as test_client:
        yield test_client
