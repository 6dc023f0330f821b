"""
Grading Ingest API
FastAPI service that turns survey and design drawings (ASCII DXF text, scanned
or vector PDFs and images) into classified NGL / design points with terrain
statistics for downstream earthworks tools.
"""
import logging

from dotenv import load_dotenv

# .env must be loaded before config reads the environment
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from grading_ingest import config
from grading_ingest.api.ingestion_routes import router as ingestion_router
from grading_ingest.services.logging_config import setup_logging
from grading_ingest.services.middleware import RequestTimingMiddleware

setup_logging(level=config.LOG_LEVEL, json_output=config.LOG_FORMAT != "text")
logger = logging.getLogger("grading-api")


app = FastAPI(
    title="Grading Ingest API",
    version=config.SERVICE_VERSION,
    description="Survey / design drawing ingestion: DXF parsing, document extraction, NGL/FGL classification",
)

# ---------------------------------------------------------------------------
# CORS — restricted to allowed origins from env
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

app.include_router(ingestion_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "llm_vision_model": config.LLM_VISION_MODEL,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("grading_ingest.main:app", host="0.0.0.0", port=8000, reload=True)
