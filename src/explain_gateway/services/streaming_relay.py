"""Request lifecycle for a metered, streamed explanation.

    AUTHENTICATING -> METERING -> STREAMING -> FINALIZING -> COMPLETED | FAILED

`StreamingRelay.open` covers the first two states and either raises
(Unauthorized, OutOfCredits, LedgerUnavailable) with nothing committed, or
returns a `GenerationSession` holding a consumed credit. From that point the
session owes exactly one history record: `finalize` is idempotent, runs
shielded from cancellation, and is reached from the fragment iterator's
`finally` as well as from the HTTP response wrapper.

The credit is taken before the backend is called and is never refunded.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import anyio

from ..auth.authenticator import Authenticator, Principal
from ..errors import GenerationError, OutOfCredits, StorageError
from ..logging.ledger_logger import LedgerLogger
from ..models.api_models import ExplainRequest
from ..models.history import HistoryRecord, HistoryStatus
from .credit_ledger import CreditLedger, Denied
from .generation_client import GenerationClient, ModelCatalog
from .history_store import HistoryStore
from .prompts import build_prompt

LOGGER = logging.getLogger(__name__)

DisconnectProbe = Callable[[], Awaitable[bool]]


class RelayState(str, Enum):
    AUTHENTICATING = "authenticating"
    METERING = "metering"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationSession:
    """State of one charged attempt, from metering to the history write."""

    def __init__(
        self,
        relay: "StreamingRelay",
        principal: Principal,
        request: ExplainRequest,
        model: str,
        credits_remaining: int,
        correlation_id: Optional[str] = None,
    ) -> None:
        self._relay = relay
        self.principal = principal
        self.request = request
        self.model = model
        self.credits_remaining = credits_remaining
        self.correlation_id = correlation_id
        self.state = RelayState.STREAMING
        self.record: Optional[HistoryRecord] = None
        self._chunks: List[str] = []
        self._started = False
        self._finalized = False
        # Until the stream says otherwise, the caller never received it.
        self._status = HistoryStatus.DISCONNECTED
        self._error: Optional[str] = "response was never delivered"

    @property
    def output_text(self) -> str:
        return "".join(self._chunks)

    @property
    def status(self) -> HistoryStatus:
        return self._status

    def _conclude(self, status: HistoryStatus, error: Optional[str] = None) -> None:
        self._status = status
        self._error = error

    async def fragments(
        self, is_disconnected: Optional[DisconnectProbe] = None
    ) -> AsyncIterator[str]:
        """
        Pull fragments from the backend and hand them to the caller in order.

        Stops pulling when the probe reports a disconnect, when the overall
        deadline passes, or when the backend fails; in every case the
        session is finalized before the iterator finishes.
        """
        if self._started:
            raise RuntimeError("a generation session can only be streamed once")
        self._started = True

        prompt = build_prompt(self.request.source_text, self.request.source_language)
        upstream = self._relay.generation.stream_generation(prompt, self.model)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._relay.deadline_seconds

        try:
            while True:
                if is_disconnected is not None and await is_disconnected():
                    self._conclude(HistoryStatus.DISCONNECTED, "client disconnected")
                    break
                try:
                    async with asyncio.timeout_at(deadline):
                        fragment = await upstream.__anext__()
                except StopAsyncIteration:
                    self._conclude(HistoryStatus.COMPLETED)
                    break
                except TimeoutError:
                    LOGGER.warning(
                        "Generation for user %s exceeded %.1fs deadline",
                        self.principal.user_id,
                        self._relay.deadline_seconds,
                    )
                    self._conclude(HistoryStatus.TIMED_OUT, "stream deadline exceeded")
                    break
                except GenerationError as exc:
                    LOGGER.error(
                        "Generation failed for user %s after %d fragments: %s",
                        self.principal.user_id,
                        len(self._chunks),
                        exc,
                    )
                    self._conclude(HistoryStatus.FAILED, str(exc))
                    break

                self._chunks.append(fragment)
                yield fragment
        except (GeneratorExit, asyncio.CancelledError):
            self._conclude(HistoryStatus.DISCONNECTED, "client disconnected")
            raise
        except Exception as exc:
            self._conclude(HistoryStatus.FAILED, f"relay error: {exc}")
            raise
        finally:
            with anyio.CancelScope(shield=True):
                await self._close_upstream(upstream)
                await self.finalize()

    async def _close_upstream(self, upstream: AsyncIterator[str]) -> None:
        aclose = getattr(upstream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except GenerationError as exc:
            LOGGER.warning("Closing generation stream failed: %s", exc)

    async def finalize(self) -> Optional[HistoryRecord]:
        """Write the single history record for this attempt. Safe to call twice."""
        if self._finalized:
            return self.record
        self._finalized = True
        self.state = RelayState.FINALIZING

        record = HistoryRecord(
            user_id=self.principal.user_id,
            source_text=self.request.source_text,
            source_language=self.request.source_language,
            output_text=self.output_text,
            model_used=self.model,
            status=self._status,
            error=self._error,
        )
        try:
            self.record = await self._relay.history.append(record)
        except StorageError as exc:
            LOGGER.error(
                "History record lost for user %s (charged, %d chars streamed): %s",
                self.principal.user_id,
                len(record.output_text),
                exc,
            )
            await self._relay.ledger_logger.log_error(
                message="History record not persisted",
                details={
                    "model": self.model,
                    "status": record.status.value,
                    "output_chars": len(record.output_text),
                    "error": str(exc),
                },
                user_id=self.principal.user_id,
                correlation_id=self.correlation_id,
            )

        self.state = (
            RelayState.COMPLETED
            if self._status is HistoryStatus.COMPLETED
            else RelayState.FAILED
        )
        LOGGER.info(
            "Generation for user %s finished: %s (%d chars, model %s)",
            self.principal.user_id,
            self._status.value,
            len(record.output_text),
            self.model,
        )
        return self.record


class StreamingRelay:
    def __init__(
        self,
        authenticator: Authenticator,
        credit_ledger: CreditLedger,
        generation: GenerationClient,
        history: HistoryStore,
        ledger_logger: LedgerLogger,
        catalog: ModelCatalog,
        deadline_seconds: float = 120.0,
    ) -> None:
        self.authenticator = authenticator
        self.credit_ledger = credit_ledger
        self.generation = generation
        self.history = history
        self.ledger_logger = ledger_logger
        self.catalog = catalog
        self.deadline_seconds = deadline_seconds

    async def open(
        self,
        credentials: Optional[str],
        request: ExplainRequest,
        correlation_id: Optional[str] = None,
    ) -> GenerationSession:
        """
        Authenticate and meter one request.

        Raises:
            Unauthorized: before any credit is touched.
            OutOfCredits: the balance was already zero; nothing changed.
            LedgerUnavailable: the balance could not be read or written.
        """
        LOGGER.debug("relay %s: %s", correlation_id, RelayState.AUTHENTICATING.value)
        principal = await self.authenticator.authenticate(credentials)

        LOGGER.debug("relay %s: %s", correlation_id, RelayState.METERING.value)
        metering = await self.credit_ledger.consume(principal.user_id)
        if isinstance(metering, Denied):
            await self.credit_ledger.record(
                principal.user_id, metering, correlation_id=correlation_id
            )
            raise OutOfCredits(principal.user_id)

        # The credit is spent: the session must exist before the next await.
        session = GenerationSession(
            relay=self,
            principal=principal,
            request=request,
            model=self.catalog.select(principal.role, request.tier),
            credits_remaining=metering.remaining,
            correlation_id=correlation_id,
        )
        try:
            await self.credit_ledger.record(
                principal.user_id, metering, correlation_id=correlation_id
            )
        except asyncio.CancelledError:
            with anyio.CancelScope(shield=True):
                await session.finalize()
            raise
        return session
