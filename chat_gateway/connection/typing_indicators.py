# =============================================================================
# Chat Gateway -- Real-time Presence Engine
# =============================================================================

import asyncio
import logging
from collections.abc import Awaitable, Callable

log = logging.getLogger("chat_gateway.typing")

# Seconds a typing signal survives without being refreshed
TYPING_TIMEOUT = 3.0

# notify(True) -> "user is typing", notify(False) -> "user stopped typing"
TypingNotifier = Callable[[bool], Awaitable[None]]

TypingKey = tuple[str, str]


class TypingTimer:
    """Cancellable one-shot timer backed by an asyncio task."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay
        self._callback = callback
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self._callback()
        except Exception as e:
            log.error(f"Typing timer callback failed: {e}", exc_info=True)

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    @property
    def done(self) -> bool:
        return self._task.done()


class TypingCoordinator:
    """Debounced per ``(sender, peer)`` typing indicators.

    At most one timer is live per key.  A new typing signal replaces the
    previous timer, so only the latest one can fire the automatic
    "stopped typing" notification.
    """

    def __init__(self, timeout: float = TYPING_TIMEOUT):
        self.timeout = timeout
        self._timers: dict[TypingKey, TypingTimer] = {}

    async def on_typing(self, sender_id: str, peer_id: str, notify: TypingNotifier) -> None:
        key = (sender_id, peer_id)

        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        timer: TypingTimer | None = None

        async def expire() -> None:
            if self._timers.get(key) is timer:
                del self._timers[key]
            log.debug(f"Typing expired for {sender_id} -> {peer_id}")
            await notify(False)

        timer = TypingTimer(self.timeout, expire)
        self._timers[key] = timer

        await notify(True)

    async def on_stop_typing(self, sender_id: str, peer_id: str, notify: TypingNotifier) -> None:
        timer = self._timers.pop((sender_id, peer_id), None)
        if timer is not None:
            timer.cancel()

        await notify(False)

    def clear_all_for_sender(self, sender_id: str) -> int:
        """Cancel every pending timer started by *sender_id*, silently."""
        keys = [key for key in self._timers if key[0] == sender_id]
        for key in keys:
            self._timers.pop(key).cancel()

        if keys:
            log.debug(f"Cleared {len(keys)} typing timers for {sender_id}")
        return len(keys)

    def is_typing(self, sender_id: str, peer_id: str) -> bool:
        return (sender_id, peer_id) in self._timers

    @property
    def pending(self) -> int:
        return len(self._timers)

    def shutdown(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
