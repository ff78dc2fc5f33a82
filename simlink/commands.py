"""Command callback registry.

Maps a command name to the callbacks interested in it. A COMMAND
notification from the server fans out to every callback registered for
that name, with no arguments.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from simlink.exceptions import SimValueError

if TYPE_CHECKING:
    from simlink.types import SimTypes

log = logging.getLogger(__name__)


class CommandCallbackRegistry:
    """command name -> {callback id -> callback}."""

    def __init__(self) -> None:
        self._callbacks: dict[str, dict[str, SimTypes.CommandCallback]] = {}

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._callbacks.values())

    def __contains__(self, command: object) -> bool:
        return command in self._callbacks

    @property
    def commands(self) -> tuple[str, ...]:
        """Command names with at least one callback."""
        return tuple(self._callbacks)

    def add(self, command: str, callback: SimTypes.CommandCallback) -> str:
        """Store ``callback`` under ``command`` and return its id."""
        if not callable(callback):
            msg = "callback must be callable"
            raise SimValueError(msg, details={"command": command})
        callback_id = str(uuid.uuid4())
        self._callbacks.setdefault(command, {})[callback_id] = callback
        return callback_id

    def remove(self, command: str, callback_id: str) -> None:
        """Delete one callback.

        Raises:
            KeyError: The command or the id is not registered.

        """
        bucket = self._callbacks[command]
        del bucket[callback_id]
        if not bucket:
            del self._callbacks[command]

    def on_command_notification(self, command: str) -> int:
        """Invoke every callback registered for ``command``.

        Returns:
            Number of callbacks invoked.

        """
        bucket = self._callbacks.get(command)
        if not bucket:
            log.debug("No callbacks for command %s", command)
            return 0

        callbacks = tuple(bucket.items())
        for callback_id, callback in callbacks:
            try:
                callback()
            except Exception:
                log.exception("Command callback %s for %s failed", callback_id, command)
        return len(callbacks)

    def clear(self) -> None:
        """Forget every callback."""
        self._callbacks.clear()
