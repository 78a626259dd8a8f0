import logging
from dataclasses import dataclass

from flask import current_app
from openai import OpenAI
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .content import (
    CompletionClient, ContentGenerator, OpenAIProvider, RetryPolicy, StubProvider, UnavailableProvider, log_trace,
)
from .ledger import PurchaseLedger
from .notifications import ChatNotifier, Mailer
from .orchestrator import GenerationOrchestrator
from .queries import DocumentQueries
from .reprocess import ReprocessingSweep
from .storage import ArtifactStore
from .users import UserDirectory
from .webhook import WebhookProcessor

logger = logging.getLogger(__name__)


@dataclass
class Services:
    mongo_client: object
    ledger: PurchaseLedger
    users: UserDirectory
    store: ArtifactStore
    completions: CompletionClient
    generator: ContentGenerator
    orchestrator: GenerationOrchestrator
    sweep: ReprocessingSweep
    queries: DocumentQueries
    webhooks: WebhookProcessor
    notifier: ChatNotifier
    mailer: Mailer


def _completion_provider(config):
    if config.get("OPENAI_API_KEY"):
        client = OpenAI(api_key=config["OPENAI_API_KEY"])
        return OpenAIProvider(client, config["OPENAI_MODEL"], timeout=config["OPENAI_TIMEOUT"])
    logger.warning("OpenAI API key not set. Document generation will not work.")
    return UnavailableProvider()


def build_services(config, mongo_client=None, completion_provider=None):
    mongo_client = mongo_client or MongoClient(
        config["MONGODB_URI"], serverSelectionTimeoutMS=5000, tz_aware=True
    )
    db = mongo_client[config["MONGODB_DB"]]

    ledger = PurchaseLedger(db["purchases"])
    users = UserDirectory(db["users"], bootstrap_admin_uids=config.get("ADMIN_BOOTSTRAP_UIDS") or ())
    try:
        ledger.ensure_indexes()
        users.ensure_indexes()
    except PyMongoError as e:
        logger.error(f"Could not create MongoDB indexes: {e}")

    store = ArtifactStore(
        config["STORAGE_ROOT"],
        config["SECRET_KEY"],
        config["PUBLIC_BASE_URL"],
        default_ttl=config["SIGNED_URL_TTL_SECONDS"],
    )

    completions = CompletionClient(
        completion_provider or _completion_provider(config),
        retry_policy=RetryPolicy(
            max_attempts=config["OPENAI_MAX_ATTEMPTS"],
            initial_delay=config["OPENAI_RETRY_DELAY"],
        ),
        fallback=StubProvider() if config.get("OPENAI_STUB_FALLBACK") else None,
        on_trace=log_trace,
    )
    generator = ContentGenerator(completions)
    orchestrator = GenerationOrchestrator(generator, store, ledger)
    notifier = ChatNotifier(config.get("GOOGLE_CHAT_WEBHOOK_URL"))

    return Services(
        mongo_client=mongo_client,
        ledger=ledger,
        users=users,
        store=store,
        completions=completions,
        generator=generator,
        orchestrator=orchestrator,
        sweep=ReprocessingSweep(orchestrator, ledger),
        queries=DocumentQueries(ledger, store),
        webhooks=WebhookProcessor(
            config.get("STRIPE_WEBHOOK_SECRET"),
            ledger,
            users,
            orchestrator,
            notifier=notifier,
            tolerance=config["STRIPE_WEBHOOK_TOLERANCE"],
        ),
        notifier=notifier,
        mailer=Mailer(
            config.get("SMTP_SERVER"),
            config.get("SMTP_PORT"),
            config.get("SMTP_USER"),
            config.get("SMTP_PASS"),
            sender=config.get("EMAIL_FROM"),
        ),
    )


def get_services() -> Services:
    return current_app.extensions["avocat"]
