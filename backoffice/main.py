"""
Main FastAPI application
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from starlette.exceptions import HTTPException as StarletteHTTPException
from http import HTTPStatus

from backoffice.config import get_settings
from backoffice.database import engine, AsyncSessionLocal, create_tables
from backoffice.models import User, Profile, Role
from backoffice.api.auth import get_password_hash
from backoffice.api import auth, invoices, offers, settings as settings_api, users
from backoffice.api import resellers, consumers, products, invitations, activity_logs
from backoffice.services.errors import ServiceError
from backoffice.services.settings_provider import SettingsProvider
from backoffice.utils.logger import configure_logging

settings = get_settings()
configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()

    # Blank reseller settings rows; default commission stays absent until set
    async with AsyncSessionLocal() as session:
        await SettingsProvider(session).ensure_defaults()
        await session.commit()

    # Seed default admin
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Profile).where(Profile.role == Role.ADMIN.value))
        if not result.scalars().first():
            result = await session.execute(select(User).where(User.email == settings.DEFAULT_ADMIN_EMAIL))
            user = result.scalar_one_or_none()
            if user is None:
                user = User(
                    email=settings.DEFAULT_ADMIN_EMAIL,
                    hashed_password=get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
                )
                session.add(user)
                await session.flush()
            session.add(Profile(user_id=user.id, full_name="Administrator", role=Role.ADMIN.value))
            await session.commit()
            logger.info(f"Created default admin user {settings.DEFAULT_ADMIN_EMAIL}")

    yield

    await engine.dispose()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error bodies are always {"error": <reason>, "message": <curated text>}

def _error_body(status_code: int, message: str) -> dict:
    return {"error": HTTPStatus(status_code).phrase, "message": message}


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "request"
    message = f"Invalid value for {field}: {first.get('msg', 'invalid input')}"
    return JSONResponse(status_code=400, content=_error_body(400, message))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=_error_body(500, "An unexpected error occurred"))


# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(invoices.router, prefix="/api/invoices", tags=["Invoices"])
app.include_router(offers.router, prefix="/api/offers", tags=["Offers"])
app.include_router(settings_api.router, prefix="/api/settings", tags=["Settings"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])
app.include_router(resellers.router, prefix="/api/resellers", tags=["Resellers"])
app.include_router(consumers.router, prefix="/api/consumers", tags=["Consumers"])
app.include_router(products.router, prefix="/api/products", tags=["Products"])
app.include_router(invitations.router, prefix="/api/invitations", tags=["Invitations"])
app.include_router(activity_logs.router, prefix="/api/activity-logs", tags=["Activity Logs"])


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "backoffice.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
