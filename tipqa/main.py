"""
tipqa Python Service - FastAPI Application

This service:
- Receives chat messages and tip events from the chat transport bridge
- Parks questions until a qualifying tip arrives, then answers them with RAG
- Queues replies for the bridge to post (polled via /chat/send)

RUNNING THE SERVER:
    uvicorn tipqa.main:app --port 5124
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from tipqa.config import Settings, settings
from tipqa.errors import ConfigurationError
from schemas.messages import (
    ChatResponse,
    IncomingMessage,
    MessageReceived,
    SendRequest,
    SendResponse,
    TipEvent,
    TipReceived,
)
from tipqa.database.connection import create_session_factory
from tipqa.knowledge.chunker import Chunker
from tipqa.knowledge.index import KnowledgeIndex
from tipqa.knowledge.sources import KnowledgeSource, compute_fingerprint, load_knowledge_sources
from tipqa.memory.embedding_cache import EmbeddingCache
from tipqa.memory.pending_questions import PendingQuestionStore
from tipqa.memory.thread_store import ThreadStore
from tipqa.reason.answer_generator import OpenAIAnswerGenerator
from tipqa.reason.orchestrator import AnswerOrchestrator, IncomingQuestion, IncomingTip
from tipqa.reason.tips import TipPolicy
from tipqa.utils.embeddings import OpenAIEmbedder
from tipqa.utils.logging import get_logger
from tipqa.utils.outbound import OutboundMessageQueue
from tipqa.utils.price_oracle import PriceOracle

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = get_logger(__name__, category="system")
chat_logger = get_logger(f"{__name__}.chat", category="chat")
payments_logger = get_logger(f"{__name__}.payments", category="payments")

# Keep the bridge's frequent /chat/send polling out of the access log
access_logger = logging.getLogger("uvicorn.access")


def filter_access_log(record: logging.LogRecord) -> bool:
    return record.getMessage().find("/chat/send") == -1


access_logger.addFilter(filter_access_log)


app = FastAPI(
    title="tipqa Python Service",
    description="Tip-gated documentation Q&A bot backend",
    version="0.1.0",
)

# The transport bridge runs as a separate service on another port
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# SERVICE STATE (populated on startup)
# ============================================================================

message_queue = OutboundMessageQueue()
knowledge_sources: List[KnowledgeSource] = []
knowledge_index: Optional[KnowledgeIndex] = None
embedding_cache: Optional[EmbeddingCache] = None
price_oracle: Optional[PriceOracle] = None
pending_store: Optional[PendingQuestionStore] = None
thread_store: Optional[ThreadStore] = None
orchestrator: Optional[AnswerOrchestrator] = None


def validate_settings(config: Settings) -> List[str]:
    """Return the bot addresses; raise ConfigurationError if anything required is missing."""
    missing = []
    if not config.openai_api_key:
        missing.append("OPENAI_API_KEY")
    if not config.bot_id:
        missing.append("BOT_ID")
    if not config.bot_app_address:
        missing.append("BOT_APP_ADDRESS")
    if missing:
        raise ConfigurationError("Missing required settings: " + ", ".join(missing))
    if not config.knowledge_file_list:
        raise ConfigurationError("KNOWLEDGE_FILES must name at least one file")
    return [config.bot_id, config.bot_app_address]


async def init_services(config: Settings = settings) -> None:
    """Load the corpus, build the index and wire the orchestrator. Errors are fatal."""
    global knowledge_sources, knowledge_index, embedding_cache
    global price_oracle, pending_store, thread_store, orchestrator

    bot_addresses = validate_settings(config)

    knowledge_sources = load_knowledge_sources(config.knowledge_dir, config.knowledge_file_list)

    embedder = OpenAIEmbedder(
        api_key=config.openai_api_key,
        model=config.embedding_model,
        dimension=config.embedding_dim,
    )
    embedding_cache = EmbeddingCache(config.embedding_cache_path)
    knowledge_index = await KnowledgeIndex.build(
        knowledge_sources,
        embedder=embedder,
        cache=embedding_cache,
        chunker=Chunker(max_chunk_chars=config.chunk_max_chars),
        batch_size=config.embedding_batch_size,
        embedding_model=config.embedding_model,
        dimension=config.embedding_dim,
    )

    engine, session_factory = create_session_factory(config.database_url)
    thread_store = ThreadStore(session_factory, engine=engine)
    await thread_store.init_schema()

    price_oracle = PriceOracle(
        url=config.price_feed_url,
        asset_id=config.price_asset_id,
        quote_currency=config.price_quote_currency,
        ttl=timedelta(minutes=config.price_cache_ttl_minutes),
        fallback_price=config.price_fallback,
        timeout_seconds=config.price_request_timeout_seconds,
    )
    # Warm the price cache so the first tip doesn't wait on the feed
    await price_oracle.get_price()

    pending_store = PendingQuestionStore(
        max_age=(
            timedelta(minutes=config.pending_question_ttl_minutes)
            if config.pending_question_ttl_minutes
            else None
        )
    )

    orchestrator = AnswerOrchestrator(
        store=pending_store,
        price_source=price_oracle,
        retriever=knowledge_index,
        generator=OpenAIAnswerGenerator(
            api_key=config.openai_api_key,
            bot_name=config.bot_display_name,
            completion_model=config.completion_model,
            temperature=config.completion_temperature,
            max_tokens=config.completion_max_tokens,
            system_prompt_file=config.system_prompt_file,
        ),
        sender=message_queue,
        bot_addresses=bot_addresses,
        policy=TipPolicy.from_values(
            minimum_usd=config.tip_minimum_usd,
            margin=config.tip_margin,
            decimals=config.tip_asset_decimals,
            display_precision=config.tip_display_precision,
            asset_symbol=config.tip_asset_symbol,
        ),
        thread_store=thread_store,
        bot_id=config.bot_id,
        max_attempts=config.answer_max_attempts,
        top_k=config.rag_top_k,
    )
    logger.info("Orchestrator ready (%s indexed chunks)", len(knowledge_index))


def _require_orchestrator() -> AnswerOrchestrator:
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service is still starting")
    return orchestrator


# ============================================================================
# ENDPOINTS
# ============================================================================


@app.post("/events/message", response_model=MessageReceived)
async def receive_message(message: IncomingMessage):
    """A chat message from the bridge: new question, thread reply, or paid retry."""
    service = _require_orchestrator()
    chat_logger.debug(
        "Message %s from %s in %s (thread=%s, mentioned=%s)",
        message.event_id,
        message.user_id,
        message.channel_id,
        message.thread_id,
        message.is_mentioned,
    )
    try:
        outcome = await service.handle_message(
            IncomingQuestion(
                user_id=message.user_id,
                channel_id=message.channel_id,
                event_id=message.event_id,
                text=message.message,
                thread_id=message.thread_id,
                is_mentioned=message.is_mentioned,
            )
        )
    except Exception:
        logger.exception("Failed to handle message %s", message.event_id)
        raise HTTPException(status_code=500, detail="Failed to handle message")

    return MessageReceived(
        received=True, outcome=outcome.value, timestamp=datetime.now(timezone.utc)
    )


@app.post("/events/tip", response_model=TipReceived)
async def receive_tip(tip: TipEvent):
    """A tip event from the bridge."""
    service = _require_orchestrator()
    payments_logger.info(
        "Tip from %s: %s smallest units to %s", tip.user_id, tip.amount, tip.receiver_address
    )
    try:
        outcome = await service.handle_tip(
            IncomingTip(
                user_id=tip.user_id,
                channel_id=tip.channel_id,
                receiver_address=tip.receiver_address,
                amount=tip.amount,
                event_id=tip.event_id,
            )
        )
    except Exception:
        logger.exception("Failed to handle tip from %s", tip.user_id)
        raise HTTPException(status_code=500, detail="Failed to handle tip")

    return TipReceived(received=True, outcome=outcome.value, timestamp=datetime.now(timezone.utc))


@app.post("/chat/send", response_model=SendResponse)
async def send_messages(request: SendRequest):
    """Hand queued bot messages to the bridge (removed from the queue once returned)."""
    drained = message_queue.drain(request.channel_id, request.limit)
    if drained:
        chat_logger.debug("Returning %s message(s) for %s", len(drained), request.channel_id)
    return SendResponse(
        messages=[
            ChatResponse(
                event_id=m.event_id,
                channel_id=m.channel_id,
                message=m.message,
                thread_id=m.thread_id,
            )
            for m in drained
        ]
    )


@app.get("/health")
async def health_check():
    snapshot = price_oracle.snapshot if price_oracle is not None else None
    return {
        "status": "healthy" if orchestrator is not None else "starting",
        "service": "tipqa",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "knowledge": {
            "fingerprint": compute_fingerprint(knowledge_sources) if knowledge_sources else None,
            "sources": [
                {
                    "id": s.id,
                    "file": s.file_name,
                    "bytes": s.byte_length,
                    "checksum": s.checksum,
                }
                for s in knowledge_sources
            ],
            "chunks": len(knowledge_index) if knowledge_index is not None else 0,
            "loaded_from_cache": (
                knowledge_index.loaded_from_cache if knowledge_index is not None else False
            ),
        },
        "cache": embedding_cache.info() if embedding_cache is not None else {"exists": False},
        "price": (
            {"value": snapshot.price, "fetched_at": snapshot.fetched_at.isoformat()}
            if snapshot is not None
            else None
        ),
        "pending_questions": len(pending_store) if pending_store is not None else 0,
        "queued_messages": len(message_queue),
    }


@app.get("/", response_class=PlainTextResponse)
async def root():
    return (
        f"{settings.bot_display_name} - tip-gated documentation assistant\n\n"
        f"Status: {'Running' if orchestrator is not None else 'Starting'}\n"
        "Messages: POST /events/message\n"
        "Tips: POST /events/tip\n"
        "Outbound: POST /chat/send\n"
        "Health: GET /health\n"
    )


# ============================================================================
# STARTUP/SHUTDOWN
# ============================================================================


@app.on_event("startup")
async def startup_event():
    logger.info("tipqa service starting on %s:%s", settings.host, settings.port)
    await init_services(settings)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("tipqa service shutting down")

    if price_oracle is not None:
        try:
            await price_oracle.aclose()
        except Exception as exc:
            logger.error("Error closing price oracle client: %s", exc)

    if thread_store is not None:
        try:
            await thread_store.close()
        except Exception as exc:
            logger.error("Error closing thread store: %s", exc)
