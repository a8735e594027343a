# dripster/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from dripster.core.config import settings
from dripster.core.db import Base, engine
from dripster.core.errors import OtpError

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title=f"{settings.APP_NAME} OTP API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

CORS_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


# preflight 여부와 관계없이 모든 OPTIONS 에 200
@app.middleware("http")
async def options_handler(request: Request, call_next):
    if request.method == "OPTIONS":
        headers = dict(CORS_HEADERS)
        origin = request.headers.get("origin")
        if "*" in settings.CORS_ALLOW_ORIGINS:
            headers["Access-Control-Allow-Origin"] = "*"
        elif origin in settings.CORS_ALLOW_ORIGINS:
            headers["Access-Control-Allow-Origin"] = origin
        return Response(status_code=200, headers=headers)
    return await call_next(request)


from dripster.models.email_verification import EmailVerification

Base.metadata.create_all(bind=engine)
logger.info("DB backend: %s, tables: %s", engine.url.get_backend_name(), list(Base.metadata.tables.keys()))


@app.exception_handler(OtpError)
async def otp_error_handler(request: Request, exc: OtpError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": f"{field}: {msg}" if field else msg})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


from dripster.routers.health import router as health_router
from dripster.routers.otp import router as otp_router

routers = [
    health_router,
    otp_router,
]

for r in routers:
    app.include_router(r)
