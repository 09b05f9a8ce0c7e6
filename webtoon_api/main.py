import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from webtoon_api.config import CORS_ORIGINS, LOG_LEVEL
from webtoon_api.database import SCHEMA, Base, engine
from webtoon_api.exceptions import ConflictError, NotFoundError, PersistFailure, RoleValidationError, UploadFailure
from webtoon_api.limiter import limiter
from webtoon_api.routes import auth, chapter_routes, notification_routes, role_routes, webtoon_routes

# Register every model on Base.metadata before create_all
from webtoon_api.models import chapter_model, notification_model, user_model, webtoon_model  # noqa: F401

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Webtoon Reader API")

# 🔒 Rate limiting
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please slow down."}
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(RoleValidationError)
async def role_validation_handler(request: Request, exc: RoleValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(UploadFailure)
async def upload_failure_handler(request: Request, exc: UploadFailure):
    logger.error("Storage upload failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(PersistFailure)
async def persist_failure_handler(request: Request, exc: PersistFailure):
    logger.error("Database write failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ✅ Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ✅ Routers
app.include_router(auth.router, prefix="/auth")
app.include_router(webtoon_routes.router)
app.include_router(chapter_routes.router)
app.include_router(chapter_routes.admin_router)
app.include_router(role_routes.router)
app.include_router(notification_routes.router)


# ✅ Run DB init on startup
@app.on_event("startup")
async def on_startup():
    # Tiny retry so a momentary DB disconnect doesn't crash the app.
    for attempt in range(2):
        try:
            async with engine.begin() as conn:
                if SCHEMA and conn.dialect.name == "postgresql":
                    await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}";'))
                await conn.run_sync(Base.metadata.create_all)
            break
        except Exception as e:
            if attempt == 0:
                logger.warning("DB init failed, retrying once: %r", e)
                await asyncio.sleep(0.5)
            else:
                # Tables should already exist from previous runs.
                logger.error("Skipping DB init due to error: %r", e)
