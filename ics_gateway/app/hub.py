"""Contract between the gateway and the hub driver library.

The hub protocol itself (discovery, encryption, the single authenticated
session) lives in an external driver. The gateway only needs an object with
the methods of :class:`Hub`, built by a factory taking the account identifier
and secret. The factory is configured as ``"package.module:attribute"``.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field, is_dataclass
from typing import Any, Callable, Protocol, TypeVar

_LOGGER = logging.getLogger("ics_hub")


class HubError(Exception):
    """Network or protocol failure while talking to the hub."""


class Hub(Protocol):
    def login(self) -> bool: ...

    def devices(self) -> Iterable[Any]: ...

    def rooms(self) -> Iterable[Any]: ...

    def scenes(self) -> Iterable[Any]: ...

    def turn_on(self, device_id: int) -> Any: ...

    def turn_off(self, device_id: int) -> Any: ...

    def dim(self, device_id: int, level: int) -> Any: ...

    def start_scene(self, scene_id: int) -> Any: ...

    def stop_scene(self, scene_id: int) -> Any: ...


HubFactory = Callable[[str, str], Hub]


@dataclass(frozen=True)
class HubRecord:
    id: int
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def as_json(self) -> dict[str, Any]:
        return {**self.attributes, "id": self.id, "name": self.name}


class Device(HubRecord):
    pass


class Room(HubRecord):
    pass


class Scene(HubRecord):
    pass


_P = TypeVar("_P", Device, Room, Scene)


def _record_fields(item: Any) -> dict[str, Any]:
    if isinstance(item, Mapping):
        return dict(item)
    if is_dataclass(item) and not isinstance(item, type):
        return asdict(item)
    try:
        return {k: v for k, v in vars(item).items() if not k.startswith("_")}
    except TypeError as e:
        raise HubError(f"unsupported hub record: {type(item).__name__}") from e


def _project(kind: type[_P], items: Iterable[Any]) -> list[_P]:
    out: list[_P] = []
    for item in items:
        fields = _record_fields(item)
        raw_id = fields.pop("id", None)
        name = fields.pop("name", None)
        if isinstance(raw_id, bool) or raw_id is None:
            raise HubError(f"{kind.__name__.lower()} record without id: {fields!r}")
        try:
            item_id = int(raw_id)
        except (TypeError, ValueError) as e:
            raise HubError(f"{kind.__name__.lower()} record with invalid id: {raw_id!r}") from e
        if name is None:
            raise HubError(f"{kind.__name__.lower()} {item_id} has no name")
        out.append(kind(id=item_id, name=str(name), attributes=fields))
    return out


def list_devices(hub: Hub) -> list[Device]:
    devices = _project(Device, hub.devices())
    _LOGGER.debug("Hub reported %d devices", len(devices))
    return devices


def list_rooms(hub: Hub) -> list[Room]:
    rooms = _project(Room, hub.rooms())
    _LOGGER.debug("Hub reported %d rooms", len(rooms))
    return rooms


def list_scenes(hub: Hub) -> list[Scene]:
    scenes = _project(Scene, hub.scenes())
    _LOGGER.debug("Hub reported %d scenes", len(scenes))
    return scenes


def load_hub_factory(spec: str) -> HubFactory:
    module_name, sep, attr = (spec or "").strip().partition(":")
    if not module_name or not sep or not attr:
        raise ValueError(f"hub factory must look like 'package.module:attribute', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"cannot import hub driver module {module_name!r}: {e}") from e

    obj: Any = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ValueError(f"{module_name!r} has no attribute {attr!r}") from e
    if not callable(obj):
        raise ValueError(f"hub factory {spec!r} is not callable")
    return obj
