from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Union

from .hub import Hub

_LOGGER = logging.getLogger("ics_dispatcher")


class InvalidArgument(ValueError):
    """An intent carries a value the hub must never receive."""


@dataclass(frozen=True)
class DeviceOn:
    id: int


@dataclass(frozen=True)
class DeviceOff:
    id: int


@dataclass(frozen=True)
class DeviceDim:
    id: int
    level: int


@dataclass(frozen=True)
class ScenePlay:
    id: int


@dataclass(frozen=True)
class SceneStop:
    id: int


ActionIntent = Union[DeviceOn, DeviceOff, DeviceDim, ScenePlay, SceneStop]


class Dispatcher:
    """Maps an action intent to the one hub call that carries it out."""

    def __init__(self, *, dim_min: int = 0, dim_max: int = 15):
        self._dim_min = int(dim_min)
        self._dim_max = int(dim_max)

    def _check_dim_level(self, level: Any) -> int:
        if isinstance(level, bool) or not isinstance(level, int):
            raise InvalidArgument(f"dim level must be an integer, got {level!r}")
        if not self._dim_min <= level <= self._dim_max:
            raise InvalidArgument(f"dim level must be within {self._dim_min}..{self._dim_max}, got {level}")
        return level

    def bind(self, intent: ActionIntent) -> Callable[[Hub], Any]:
        """Validate ``intent`` and return the hub operation for it.

        Validation happens here, before the operation is queued, so a rejected
        intent never reaches the hub.
        """
        if isinstance(intent, DeviceOn):
            device_id = intent.id

            def op(hub: Hub) -> Any:
                _LOGGER.debug("turn_on(%s)", device_id)
                return hub.turn_on(device_id)

        elif isinstance(intent, DeviceOff):
            device_id = intent.id

            def op(hub: Hub) -> Any:
                _LOGGER.debug("turn_off(%s)", device_id)
                return hub.turn_off(device_id)

        elif isinstance(intent, DeviceDim):
            device_id = intent.id
            level = self._check_dim_level(intent.level)

            def op(hub: Hub) -> Any:
                _LOGGER.debug("dim(%s, %s)", device_id, level)
                return hub.dim(device_id, level)

        elif isinstance(intent, ScenePlay):
            scene_id = intent.id

            def op(hub: Hub) -> Any:
                _LOGGER.debug("start_scene(%s)", scene_id)
                return hub.start_scene(scene_id)

        elif isinstance(intent, SceneStop):
            scene_id = intent.id

            def op(hub: Hub) -> Any:
                _LOGGER.debug("stop_scene(%s)", scene_id)
                return hub.stop_scene(scene_id)

        else:
            raise InvalidArgument(f"unsupported intent: {intent!r}")

        return op
