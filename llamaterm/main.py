from __future__ import annotations

import contextlib
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel

from .errors import NotFoundError, StorageError, ValidationError
from .relay import RelayEngine
from .settings import SettingsStore
from .storage import MessageStore, seed_welcome_message
from .templates import render_terminal_page

DATA_DIR = Path(os.environ.get("LLAMATERM_DATA_DIR", "data"))
DEFAULT_LLM_TIMEOUT = 120.0


def _configure_logging(data_dir: Path) -> logging.Logger:
    logger = logging.getLogger("llamaterm")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    data_dir.mkdir(parents=True, exist_ok=True)
    log_file = data_dir / "server.log"
    file_handler = RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.INFO)
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False
    logger.debug("Logging initialised, writing to %s", log_file)
    return logger


logger = _configure_logging(DATA_DIR)


def _env_timeout(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning(
            "Ignoring invalid LLAMATERM_LLM_TIMEOUT=%r, using %s seconds", raw, DEFAULT_LLM_TIMEOUT
        )
        value = DEFAULT_LLM_TIMEOUT
    return value if value > 0 else None


LLM_TIMEOUT = _env_timeout(os.environ.get("LLAMATERM_LLM_TIMEOUT", str(DEFAULT_LLM_TIMEOUT)))
HOST = os.environ.get("LLAMATERM_HOST", "127.0.0.1")
PORT = int(os.environ.get("LLAMATERM_PORT", "5000"))


class ChatRequest(BaseModel):
    message: str


class SettingUpdate(BaseModel):
    value: str


def _error(message: str, status_code: int, field: Optional[str] = None) -> JSONResponse:
    payload: Dict[str, Any] = {"message": message}
    if field is not None:
        payload["field"] = field
    return JSONResponse(payload, status_code=status_code)


def create_app(data_dir: Path = DATA_DIR, llm_timeout: Optional[float] = LLM_TIMEOUT) -> FastAPI:
    """
    Build the API around stores rooted at ``data_dir``.

    The stores and relay engine are created here and shared by every route.
    """
    message_store = MessageStore(data_dir)
    settings_store = SettingsStore(data_dir)
    relay_engine = RelayEngine(message_store, settings_store, timeout=llm_timeout)

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        seed_welcome_message(message_store)
        logger.info("Application startup complete (data_dir=%s).", data_dir)
        yield
        logger.info("Application shutdown complete.")

    app = FastAPI(title="LlamaTerm", lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def on_request_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = [str(part) for part in first.get("loc", ())]
        if first.get("type") == "json_invalid":
            # The location of a JSON syntax error is a character offset.
            field = "body"
        else:
            field = ".".join(location[1:] or location)
        return _error(first.get("msg", "Invalid request."), status.HTTP_400_BAD_REQUEST, field)

    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(exc.message, status.HTTP_400_BAD_REQUEST, exc.field)

    @app.exception_handler(NotFoundError)
    async def on_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(str(exc), status.HTTP_404_NOT_FOUND)

    @app.exception_handler(StorageError)
    async def on_storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(
            "Storage failure on %s %s", request.method, request.url.path, exc_info=exc
        )
        return _error("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.exception_handler(Exception)
    async def on_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return _error("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.get("/", response_class=HTMLResponse)
    async def terminal() -> HTMLResponse:
        return HTMLResponse(render_terminal_page())

    @app.get("/api/chat/history")
    def chat_history() -> JSONResponse:
        return JSONResponse([message.to_dict() for message in message_store.list_all()])

    @app.post("/api/chat")
    def send_message(payload: ChatRequest) -> JSONResponse:
        reply = relay_engine.relay(payload.message)
        return JSONResponse(reply.to_dict())

    @app.delete("/api/chat/history", status_code=status.HTTP_204_NO_CONTENT)
    def clear_history() -> Response:
        message_store.clear_all()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/api/settings/{key}")
    def get_setting(key: str) -> JSONResponse:
        setting = settings_store.get(key)
        if setting is None:
            raise NotFoundError("Setting not found")
        return JSONResponse(setting.to_dict())

    @app.put("/api/settings/{key}")
    def update_setting(key: str, payload: SettingUpdate) -> JSONResponse:
        setting = settings_store.upsert(key, payload.value)
        return JSONResponse(setting.to_dict())

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=HOST, port=PORT)


# Convenience include for uvicorn.
__all__ = ["app", "create_app", "run"]
