from __future__ import annotations

from typing import Mapping, Optional

import anyio
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from ..services.streaming_relay import DisconnectProbe, GenerationSession


class RelayStreamingResponse(StreamingResponse):
    """
    Chunked plain-text response backed by a generation session.

    Headers go out before the first fragment exists. Whatever happens to
    the connection, the session is finalized once the response is done.
    """

    def __init__(
        self,
        session: GenerationSession,
        is_disconnected: Optional[DisconnectProbe] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(
            session.fragments(is_disconnected=is_disconnected),
            status_code=200,
            headers={
                "X-Credits-Remaining": str(session.credits_remaining),
                "X-Model-Used": session.model,
                "Cache-Control": "no-cache",
                **(headers or {}),
            },
            media_type="text/plain; charset=utf-8",
        )
        self.session = session

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.body_iterator.aclose()  # type: ignore[union-attr]
                await self.session.finalize()
