"""Mock channel for local development and testing.

Records messages instead of sending them. No network calls.
"""

from __future__ import annotations

from sentinel.core.exceptions import ChannelSendError
from sentinel.models.notification import SendResult


class MockChannel:
    """IChannel implementation that records every send attempt."""

    def __init__(self, name: str, fail_with: str | None = None, raise_error: bool = False) -> None:
        self.name = name
        self._fail_with = fail_with
        self._raise_error = raise_error
        self.sent: list[tuple[str, str]] = []

    @property
    def attempts(self) -> int:
        return len(self.sent)

    async def send(self, address: str, message: str) -> SendResult:
        self.sent.append((address, message))
        if self._raise_error:
            raise ChannelSendError(self.name, "simulated transport failure")
        if self._fail_with:
            return SendResult(success=False, error=self._fail_with)
        return SendResult(success=True, provider_message_id=f"{self.name}-{len(self.sent)}")
