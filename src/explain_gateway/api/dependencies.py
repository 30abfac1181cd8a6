from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import Request

from ..auth.authenticator import Authenticator, JwtAuthenticator
from ..config import Settings
from ..db.base import BaseDBManager
from ..db.memory import InMemoryDBManager
from ..db.mongo import MongoDBManager
from ..logging.ledger_logger import LedgerLogger
from ..models.user import Role
from ..services.credit_ledger import CreditLedger
from ..services.generation_client import (
    GeminiGenerationClient,
    GenerationClient,
    ModelCatalog,
)
from ..services.history_store import HistoryStore
from ..services.reset_service import CreditResetService
from ..services.streaming_relay import StreamingRelay


@dataclass
class Services:
    """Everything a request handler may reach, built once per application."""

    settings: Settings
    db: BaseDBManager
    authenticator: Authenticator
    ledger_logger: LedgerLogger
    credit_ledger: CreditLedger
    generation: GenerationClient
    history: HistoryStore
    relay: StreamingRelay
    reset: CreditResetService


def create_db_manager(settings: Settings) -> BaseDBManager:
    if settings.mongo_uri:
        return MongoDBManager.from_client_uri(settings.mongo_uri, settings.mongo_db)
    return InMemoryDBManager()


def build_services(
    settings: Settings,
    db: Optional[BaseDBManager] = None,
    generation: Optional[GenerationClient] = None,
    authenticator: Optional[Authenticator] = None,
) -> Services:
    db = db or create_db_manager(settings)
    ledger_logger = LedgerLogger(db=db, file_path=Path(settings.ledger_log_path))
    authenticator = authenticator or JwtAuthenticator(
        db=db, secret=settings.jwt_secret, lifetime_seconds=settings.jwt_lifetime_seconds
    )
    generation = generation or GeminiGenerationClient(
        api_key=settings.gemini_api_key,
        base_url=settings.gemini_base_url,
        timeout=settings.generation_timeout_seconds,
    )
    credit_ledger = CreditLedger(db=db, ledger=ledger_logger)
    history = HistoryStore(
        db=db,
        default_limit=settings.history_limit,
        max_limit=settings.max_history_limit,
    )
    relay = StreamingRelay(
        authenticator=authenticator,
        credit_ledger=credit_ledger,
        generation=generation,
        history=history,
        ledger_logger=ledger_logger,
        catalog=ModelCatalog(settings.basic_model, settings.pro_model),
        deadline_seconds=settings.stream_deadline_seconds,
    )
    reset = CreditResetService(
        db=db,
        ledger=ledger_logger,
        allowances={
            Role.BASIC: settings.basic_daily_credits,
            Role.PRO: settings.pro_daily_credits,
        },
    )
    return Services(
        settings=settings,
        db=db,
        authenticator=authenticator,
        ledger_logger=ledger_logger,
        credit_ledger=credit_ledger,
        generation=generation,
        history=history,
        relay=relay,
        reset=reset,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
