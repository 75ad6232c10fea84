import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from datetime import datetime

from . import __version__
from .config import settings
from .api.routes import router, get_orchestrator
from .api.middleware import setup_middleware

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting AI HR Strategy Diagnosis service...")

    if get_orchestrator().configured:
        logger.info(f"Diagnosis provider ready ({settings.MODEL_NAME})")
    else:
        logger.warning("OPENAI_API_KEY is not set; AI actions will return 500 until it is configured")

    yield

    # Shutdown
    logger.info("Shutting down...")

# Create FastAPI app
app = FastAPI(
    title="AI HR Strategy Diagnosis",
    description="Personality diagnosis, team building and hiring recommendations",
    version=__version__,
    lifespan=lifespan
)

# Setup middleware
setup_middleware(app)

# Include routes
app.include_router(router, prefix="/api/v1", tags=["Diagnosis"])

@app.get("/", response_class=HTMLResponse)
async def root():
    return HTMLResponse(content="""
    <!DOCTYPE html>
    <html>
    <head>
        <title>AI HR Strategy Diagnosis</title>
        <style>
            body { font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }
            .header { background: linear-gradient(135deg, #0ea5e9 0%, #6366f1 100%); color: white; padding: 20px; border-radius: 10px; }
            .section { margin: 20px 0; padding: 15px; border: 1px solid #ddd; border-radius: 5px; }
            .endpoint { background: #f8f9fa; padding: 10px; margin: 5px 0; border-radius: 3px; }
            a { color: #6366f1; text-decoration: none; }
            a:hover { text-decoration: underline; }
        </style>
    </head>
    <body>
        <div class="header">
            <h1>AI HR Strategy Diagnosis</h1>
            <p>Personality diagnosis for individuals, recruitment and team building</p>
        </div>

        <div class="section">
            <h2>API Endpoints</h2>
            <div class="endpoint"><strong>POST</strong> /api/v1/ai - Run an AI action (optionally streamed)</div>
            <div class="endpoint"><strong>POST</strong> /api/v1/sessions - Start a session</div>
            <div class="endpoint"><strong>POST</strong> /api/v1/sessions/{id}/diagnosis - Run a diagnosis</div>
            <div class="endpoint"><strong>POST</strong> /api/v1/sessions/{id}/roster/import - Upload employee data (.xlsx)</div>
            <div class="endpoint"><strong>GET</strong> /api/v1/sessions/{id}/roster/export - Download employee data (.xlsx)</div>
            <div class="endpoint"><strong>GET</strong> /api/v1/mbti/questions - MBTI questionnaire</div>
        </div>

        <div class="section">
            <h2>Documentation</h2>
            <p><a href="/docs" target="_blank">Interactive API Documentation</a></p>
            <p><a href="/api/v1/health">Health Check</a></p>
        </div>
    </body>
    </html>
    """)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "timestamp": datetime.now().isoformat()
        }
    )
