import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from consultation_ai.api.routes.consultation_routes import router as consultation_routes
from consultation_ai.core.config import settings
from consultation_ai.core.errors import PersistenceError
from consultation_ai.core.logging_config import configure_logging
from consultation_ai.db.consultation_store import ConsultationStore
from consultation_ai.services.ai_gateway import AIGateway
from consultation_ai.services.consultation_pipeline import ConsultationPipeline

logger = logging.getLogger(__name__)

app = FastAPI(
    title="AI Consultation Pipeline",
    description="Turns recorded consultations into structured clinical records",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(consultation_routes)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse({"error": "Database operation failed", "details": str(exc)}, status_code=500)


@app.on_event("startup")
async def startup_event():
    configure_logging(settings.LOG_LEVEL)
    if not (settings.OPENAI_API_KEY or settings.AZURE_OPENAI_API_KEY):
        logger.warning("No OpenAI API key configured; AI calls will fail and degrade")

    store = ConsultationStore(settings.DATABASE_PATH, timeout=settings.DATABASE_TIMEOUT_SECONDS)
    await store.init()
    gateway = AIGateway.from_settings(settings)

    app.state.settings = settings
    app.state.store = store
    app.state.gateway = gateway
    app.state.pipeline = ConsultationPipeline(gateway, store, settings)
    logger.info("Consultation store ready at %s", settings.DATABASE_PATH)


@app.on_event("shutdown")
async def shutdown_event():
    gateway = getattr(app.state, "gateway", None)
    if gateway is not None:
        await gateway.close()
