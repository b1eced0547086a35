import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from storyloom.core.config import settings
from storyloom.core.errors import ServiceError
from storyloom.core.logging_config import setup_logging


setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version="0.1.0")

# 浏览器前端通过 cookie 会话访问, 需要显式列出来源
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    return RedirectResponse(url="/docs")


@app.get("/favicon.ico", include_in_schema=False)
def _favicon() -> Response:
    return Response(status_code=204)


@app.get("/health", tags=["system"])  # 健康检查
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok"})


# ---- Error bodies: {"error": "..."} everywhere ----
@app.exception_handler(ServiceError)
async def _service_error(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse({"error": message}, status_code=400)


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# ---- Models (registered before create_all and relationship resolution) ----
from storyloom.models import api_config, chapter, novel, usage_log, user  # noqa: E402,F401

# ---- Routers ----
from storyloom.api.auth import router as auth_router  # noqa: E402
from storyloom.api.novels import router as novels_router  # noqa: E402
from storyloom.api.chapters import router as chapters_router  # noqa: E402
from storyloom.api.generate import router as generate_router  # noqa: E402
from storyloom.api.user import router as user_router  # noqa: E402
from storyloom.api.admin import router as admin_router  # noqa: E402

app.include_router(auth_router)
app.include_router(novels_router)
app.include_router(chapters_router)
app.include_router(generate_router)
app.include_router(user_router)
app.include_router(admin_router)

# ---- DB init on startup ----
from storyloom.core.db import Base, engine  # noqa: E402


@app.on_event("startup")
def _ensure_tables() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("startup env=%s db=%s", settings.environment, engine.url.render_as_string(hide_password=True))
