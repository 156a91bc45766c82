"""
Controller Registry

Tracks the cancellation handles of in-flight requests so that a single
reply ("stop generating") or every reply can be aborted.
"""

from typing import Protocol

from loguru import logger


class Cancellable(Protocol):
    def abort(self) -> None: ...


class ControllerRegistry:
    """Cancellation handles keyed by (session index, message id)."""

    def __init__(self):
        self.controllers: dict[str, Cancellable] = {}

    @staticmethod
    def key(session_index: int, message_id: int) -> str:
        return f"{session_index},{message_id}"

    def add(self, session_index: int, message_id: int, controller: Cancellable) -> str:
        key = self.key(session_index, message_id)
        if key in self.controllers:
            logger.warning(f"Replacing pending controller for {key}")
        self.controllers[key] = controller
        return key

    def get(self, session_index: int, message_id: int) -> Cancellable | None:
        return self.controllers.get(self.key(session_index, message_id))

    def stop(self, session_index: int, message_id: int) -> bool:
        """Abort one request. Returns False when nothing is registered for the key."""
        controller = self.controllers.get(self.key(session_index, message_id))
        if controller is None:
            return False
        controller.abort()
        return True

    def stop_all(self) -> int:
        controllers = list(self.controllers.values())
        for controller in controllers:
            controller.abort()
        if controllers:
            logger.info(f"Aborted {len(controllers)} pending request(s)")
        return len(controllers)

    def has_pending(self) -> bool:
        return len(self.controllers) > 0

    def remove(self, session_index: int, message_id: int) -> None:
        self.controllers.pop(self.key(session_index, message_id), None)

    def clear(self) -> None:
        self.controllers.clear()
