"""Создаёт FastAPI-приложение, подключает маршруты, middleware и обработчики ошибок."""

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tabroom.core.config import settings
from tabroom.core.errors import TabError
from tabroom.core.session import SESSION_COOKIE, user_id_from_token
from tabroom.core.state import AppState
from tabroom.db.session import SessionLocal
from tabroom.routers.web import router as web_router
from tabroom.services.broadcast import Broadcaster

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.tab.executor.shutdown(wait=False, cancel_futures=True)


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
app.state.tab = AppState(
    session_factory=SessionLocal,
    executor=ThreadPoolExecutor(max_workers=settings.draw_workers, thread_name_prefix="tab-worker"),
    broadcaster=Broadcaster(settings.broadcast_queue_size),
)


@app.middleware("http")
async def session_middleware(request: Request, call_next):
    # Пользователь определяется по подписанной cookie; без неё запрос анонимный.
    request.state.user_id = user_id_from_token(request.cookies.get(SESSION_COOKIE))
    return await call_next(request)


@app.exception_handler(TabError)
async def tab_error_handler(request: Request, exc: TabError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    return JSONResponse({"ok": False, "error": exc.message, "details": exc.details}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"ok": False, "error": "Internal application error."}, status_code=500)


# Подключаем роуты API.
app.include_router(web_router)
