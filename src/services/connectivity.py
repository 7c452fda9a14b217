from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable

from src.core.logging import get_logger

log = get_logger(__name__)

RestoreListener = Callable[[], Awaitable[object]]


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class ConnectivityMonitor:
    """Holds the last reported connectivity state.

    Detection happens elsewhere; callers push transitions in through ``update``.
    """

    def __init__(self, initial: ConnectionState = ConnectionState.UNKNOWN) -> None:
        self._state = initial
        self._listeners: list[RestoreListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_offline(self) -> bool:
        return self._state is ConnectionState.OFFLINE

    def on_restored(self, listener: RestoreListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: RestoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def update(self, state: ConnectionState) -> None:
        previous = self._state
        self._state = state
        if previous is state:
            return
        log.info("connectivity_changed", previous=previous.value, current=state.value)
        if state is ConnectionState.CONNECTED:
            for listener in list(self._listeners):
                await listener()
