import random
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from export_assistant.core.config import Settings, settings
from export_assistant.core.exceptions import AssistantError, MessageValidationError
from export_assistant.core.mongo import create_mongo_client, get_mongo_db
from export_assistant.controllers import (
    analytics_controller, chat_controller, personalization_controller, user_controller,
)
from export_assistant.repositories.base import InMemoryStore, PersistenceStore
from export_assistant.repositories.mongo_store import MongoStore
from export_assistant.services.analytics_service import AnalyticsService
from export_assistant.services.chat_service import ChatService
from export_assistant.services.context_service import ContextService
from export_assistant.services.entity_extractor import EntityExtractor
from export_assistant.services.intent_classifier import IntentClassifier
from export_assistant.services.personalization_service import PersonalizationService
from export_assistant.services.response_generator import ResponseGenerator
from export_assistant.services.trade_data_service import TradeDataService
from export_assistant.utils.response import error_response

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("main")


def create_store(config: Settings) -> PersistenceStore:
    if config.storage_backend == "mongo":
        client = create_mongo_client(config.mongo_url)
        logger.info(f"Using Mongo store {config.mongo_db}")
        return MongoStore(get_mongo_db(client, config.mongo_db), client)
    logger.info("Using in-memory store")
    return InMemoryStore()


def build_services(app: FastAPI, config: Settings, store: PersistenceStore) -> None:
    rng = random.Random(config.random_seed)
    extractor = EntityExtractor()
    contexts = ContextService(store, config)
    personalization = PersonalizationService(store, config, rng=rng)
    analytics = AnalyticsService(store, config)
    data_service = None
    if config.enable_trade_data:
        data_service = TradeDataService(
            store, config.trade_api_base_url, config.trade_api_timeout_seconds, config.trade_cache_ttl_ms,
        )
    generator = ResponseGenerator(data_service, rng=rng)

    app.state.store = store
    app.state.context_service = contexts
    app.state.personalization_service = personalization
    app.state.analytics_service = analytics
    app.state.chat_service = ChatService(
        contexts, IntentClassifier(extractor), generator, personalization, analytics, config,
    )


def create_app(config: Settings = None, store: PersistenceStore = None) -> FastAPI:
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        build_services(app, config, store or create_store(config))
        await app.state.analytics_service.start()
        logger.info(f"{config.app_name} started")
        try:
            yield
        finally:
            await app.state.analytics_service.stop()
            await app.state.store.close()
            logger.info(f"{config.app_name} stopped")

    app = FastAPI(
        title=config.app_name,
        debug=config.debug,
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AssistantError)
    async def assistant_error_handler(request: Request, exc: AssistantError):
        status_code = 422 if isinstance(exc, MessageValidationError) else 500
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content=error_response(message=exc.message, error=exc.to_dict()).model_dump(),
        )

    # Include routers
    app.include_router(chat_controller.router, prefix=config.api_prefix)
    app.include_router(user_controller.router, prefix=config.api_prefix)
    app.include_router(personalization_controller.router, prefix=config.api_prefix)
    app.include_router(analytics_controller.router, prefix=config.api_prefix)

    # Health check endpoint
    @app.get("/")
    async def root():
        return {
            "message": "Export Assistant API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": [
                f"{config.api_prefix}/chat/",
                f"{config.api_prefix}/users/",
                f"{config.api_prefix}/personalization/",
                f"{config.api_prefix}/analytics/",
                "/docs",
            ],
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "app": config.app_name}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "export_assistant.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug
    )
