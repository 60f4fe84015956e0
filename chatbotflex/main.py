# /chatbotflex/main.py

import os
import time
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from chatbotflex.config.settings import settings
from chatbotflex.utils.lifecycle import lifespan
from chatbotflex.utils.metrics import response_time_histogram
from chatbotflex.utils.request_utils import limiter
from chatbotflex.routes import auth, flows, webhooks, public

app = FastAPI(
    title="chatbotflex bot backend",
    version="1.0.0",
    description="WhatsApp and Instagram support bot driven by visually authored flows",
    lifespan=lifespan,
    openapi_url=f"/api/{settings.api_version}/openapi.json" if settings.environment != "production" else None,
    docs_url=f"/api/{settings.api_version}/docs" if settings.environment != "production" else None,
    redoc_url=f"/api/{settings.api_version}/redoc" if settings.environment != "production" else None,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Middleware ---
cors_origins = [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def performance_middleware(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    route = request.scope.get("route")
    response_time_histogram.labels(endpoint=getattr(route, "path", "unmatched")).observe(process_time)
    response.headers["X-Process-Time"] = str(process_time)
    return response


# --- API Routers ---
app.include_router(public.router)
app.include_router(auth.router, prefix=f"/api/{settings.api_version}")
app.include_router(flows.router, prefix=f"/api/{settings.api_version}")
app.include_router(webhooks.router, prefix=f"/api/{settings.api_version}/webhooks")

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "127.0.0.1")

    uvicorn.run(
        "chatbotflex.main:app",
        host=host,
        port=port,
        reload=settings.environment == "development",
        workers=settings.workers if settings.environment == "production" else 1
    )
