"""Wire a SessionService from Settings: OpenAI collaborators plus the store backend."""

from __future__ import annotations
import logging
from typing import Optional

from .config import Settings, configure_logging, get_settings
from .finalizer import Finalizer
from .interfaces import SessionStore
from .janitor import RecoverySweeper
from .models import LLMSettings
from .persistence.session_store import InMemorySessionStore
from .persistence.sqlite_store import SQLiteSessionStore
from .service import SessionService
from .services.analyzer import LLMAnalyzer
from .services.llm_openai import OpenAILLMClient
from .services.pricing import UsageMeter
from .services.question_generator import LLMQuestionGenerator
from .services.speech import OpenAISpeechSynthesizer
from .services.summarizer import LLMSummarizer
from .services.voice import OpenAITranscriber
from .synchronizer import TranscriptSynchronizer

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> SessionStore:
    if settings.store_backend == "memory":
        return InMemorySessionStore()
    return SQLiteSessionStore(settings.database_path)


def build_service(
    settings: Optional[Settings] = None,
    *,
    store: Optional[SessionStore] = None,
    usage: Optional[UsageMeter] = None,
) -> SessionService:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    store = store or build_store(settings)
    usage = usage or UsageMeter()
    timeout = settings.collaborator_timeout_seconds

    llm = OpenAILLMClient(settings.openai_api_key, timeout=timeout)
    finalizer = Finalizer(
        store,
        LLMSummarizer(
            llm,
            settings=LLMSettings(model=settings.chat_model, temperature=0.2, max_tokens=300),
            usage=usage,
        ),
        LLMAnalyzer(
            llm,
            settings=LLMSettings(
                model=settings.chat_model,
                temperature=0.2,
                max_tokens=400,
                response_format={"type": "json_object"},
            ),
            usage=usage,
        ),
        timeout=timeout,
        claim_ttl_seconds=settings.claim_ttl_seconds,
    )
    service = SessionService(
        store,
        stt=OpenAITranscriber(llm, model=settings.stt_model),
        questions=LLMQuestionGenerator(
            llm,
            settings=LLMSettings(model=settings.chat_model, temperature=0.7, max_tokens=120),
            usage=usage,
        ),
        tts=OpenAISpeechSynthesizer(llm, voice=settings.tts_voice, model=settings.tts_model),
        synchronizer=TranscriptSynchronizer(
            store, debounce_seconds=settings.sync_debounce_seconds
        ),
        finalizer=finalizer,
        sweeper=RecoverySweeper(
            store,
            finalizer,
            grace_seconds=settings.sweep_grace_seconds,
            parallelism=settings.sweep_parallelism,
        ),
        timeout=timeout,
        ended_cache_size=settings.ended_cache_size,
    )
    logger.info(
        "session service ready (store=%s, model=%s)",
        type(store).__name__, settings.chat_model,
    )
    return service
