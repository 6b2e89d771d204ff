"""Interface the sync engine requires from an upstream mail provider."""

from __future__ import annotations

from typing import Any, Protocol

from mailbox_sync.core.models import HistoryPage, MessagePage

MESSAGE_ADDED = "messageAdded"


class MailUpstream(Protocol):
    """Operations the engine calls on an upstream mailbox.

    Implementations raise the ``UpstreamError`` variants from
    ``mailbox_sync.core.exceptions`` and nothing else for HTTP failures.
    """

    async def list_message_ids(
        self,
        page_size: int,
        page_token: str | None = None,
        label_ids: list[str] | None = None,
    ) -> MessagePage: ...

    async def get_message(self, message_id: str) -> dict[str, Any]: ...

    async def get_label(self, label_id: str) -> dict[str, Any]: ...

    async def list_history(
        self,
        start_history_id: str,
        history_types: list[str] | None = None,
        page_token: str | None = None,
    ) -> HistoryPage: ...
