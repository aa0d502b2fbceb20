# loyaltyguard/api/main.py
"""
WhatsApp webhook surface.

The webhook only routes: it resolves the submitter profile, answers chat
intents, and hands images to the intake batcher. Scoring and campaign
evaluation run after the reply has been sent.
"""

import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from xml.sax.saxutils import escape

from fastapi import FastAPI, Request
from fastapi.responses import Response

from loyaltyguard import __version__
from loyaltyguard.config.llm_config import LLMConfig
from loyaltyguard.config.settings import Settings
from loyaltyguard.intake import messages
from loyaltyguard.intake.batching import InboundResult, IntakeBatcher
from loyaltyguard.intake.media import WHATSAPP_PREFIX, TwilioChannel
from loyaltyguard.intake.processor import SubmissionProcessor
from loyaltyguard.pipelines.analysis import SubmissionAnalyzer
from loyaltyguard.pipelines.duplicates import FingerprintStore
from loyaltyguard.pipelines.semantic_validator import SemanticValidator
from loyaltyguard.repository.base import CampaignLedger, Notifier, ReceiptStore
from loyaltyguard.repository.memory_store import InMemoryStore
from loyaltyguard.repository.wordpress import WordPressClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "LoyaltyGuard"

HELP_PATTERN = re.compile(r"help", re.IGNORECASE)
STOP_PATTERN = re.compile(r"stop", re.IGNORECASE)
UPLOAD_PATTERNS = [r"^1$", r"upload", r"send.*receipt", r"submit.*receipt", r"receipt", r"photo", r"image"]
SUPPORT_PATTERNS = [r"^4$", r"agent", r"support", r"talk to", r"contact"]


def normalize_text(body: str) -> str:
    return " ".join((body or "").lower().split())


def matches_any(text: str, patterns: Iterable[str]) -> bool:
    return any(re.search(p, text) for p in patterns)


def twiml(message: Optional[str] = None) -> Response:
    """TwiML reply; no message means an empty <Response/>."""
    if message:
        body = f"<Response><Message>{escape(message)}</Message></Response>"
    else:
        body = "<Response/>"
    return Response(
        content=f'<?xml version="1.0" encoding="UTF-8"?>{body}',
        media_type="application/xml",
    )


def media_urls(form) -> List[str]:
    try:
        count = int(form.get("NumMedia") or 0)
    except ValueError:
        count = 0
    urls = [form.get(f"MediaUrl{i}") for i in range(count)]
    return [u for u in urls if u]


def reply_for_text(batcher: IntakeBatcher, conversation_id: str, submitter_id: str, body: str) -> str:
    """Route a text message to its intent and return the reply."""
    text = normalize_text(body)

    if HELP_PATTERN.search(body):
        batcher.stop_expecting(conversation_id)
        return messages.MENU

    if STOP_PATTERN.search(body):
        batcher.stop_expecting(conversation_id)
        return messages.STOPPED

    if matches_any(text, UPLOAD_PATTERNS):
        batcher.expect_image(conversation_id, submitter_id)
        return messages.UPLOAD_PROMPT

    batcher.stop_expecting(conversation_id)
    if matches_any(text, SUPPORT_PATTERNS):
        return messages.SUPPORT
    return messages.MENU


def build_collaborators(settings: Settings):
    """WordPress when configured, otherwise the in-memory store."""
    if settings.wp_url:
        client = WordPressClient(settings.wp_url, settings.wp_user or "", settings.wp_app_password or "")
        return client, client
    logger.warning("WP_URL not set - using in-memory receipt store and campaign ledger")
    store = InMemoryStore()
    return store, store


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ReceiptStore] = None,
    ledger: Optional[CampaignLedger] = None,
    notifier: Optional[Notifier] = None,
    analyzer: Optional[SubmissionAnalyzer] = None,
    channel: Optional[TwilioChannel] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    if store is None or ledger is None:
        default_store, default_ledger = build_collaborators(settings)
        store = store or default_store
        ledger = ledger or default_ledger

    if channel is None:
        channel = TwilioChannel(
            settings.media_auth_user,
            settings.media_auth_token,
            sender=settings.whatsapp_sender,
        )
    notifier = notifier or channel

    if analyzer is None:
        analyzer = SubmissionAnalyzer(
            settings,
            SemanticValidator(LLMConfig.from_env()),
            history=FingerprintStore(settings.fingerprint_db),
        )

    processor = SubmissionProcessor(settings, analyzer, store, ledger, notifier, channel=channel)
    batcher = IntakeBatcher(
        processor.process_batch,
        debounce_seconds=settings.debounce_seconds,
        on_failure=processor.report_failure,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        batcher.cancel_timers()
        await batcher.drain()

    app = FastAPI(
        title="LoyaltyGuard API",
        description="Receipt fraud scoring and campaign point suggestions for WhatsApp submissions.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.batcher = batcher
    app.state.processor = processor
    app.state.started_at = time.time()

    @app.get("/", tags=["meta"])
    def root():
        """Liveness endpoint, also used by keep-alive pings."""
        return {
            "status": "alive",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.time() - app.state.started_at, 1),
            "service": SERVICE_NAME,
        }

    @app.post("/whatsapp", tags=["webhook"])
    async def whatsapp_webhook(request: Request):
        form = await request.form()
        sender = str(form.get("From") or "")
        conversation_id = sender[len(WHATSAPP_PREFIX):] if sender.startswith(WHATSAPP_PREFIX) else sender
        body = str(form.get("Body") or "").strip()
        name = str(form.get("ProfileName") or "Unknown")

        logger.info(f"Incoming message from {name} ({conversation_id}) -> {body!r}")

        loop = asyncio.get_running_loop()
        try:
            submitter_id = await loop.run_in_executor(None, store.resolve_submitter, conversation_id, name)
        except Exception as e:
            logger.error(f"Profile sync failed for {conversation_id}: {e}")
            return twiml(messages.PROFILE_ERROR)
        if not submitter_id:
            logger.error(f"Missing profile id for {conversation_id}")
            return twiml(messages.PROFILE_ERROR)

        urls = media_urls(form)
        if urls:
            results = [batcher.on_inbound_image(conversation_id, url, submitter_id) for url in urls]
            if InboundResult.STARTED_BATCH in results:
                return twiml(messages.RECEIPT_RECEIVED)
            if all(r == InboundResult.IGNORED for r in results):
                return twiml(messages.NOT_EXPECTING_IMAGE)
            return twiml()

        return twiml(reply_for_text(batcher, conversation_id, submitter_id, body))

    return app


app = create_app()
