from pathlib import Path

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles

from fitchat.api.chat import invalid_request_handler, router as chat_router
from fitchat.db.session import create_tables
from fitchat.services.storage import STORAGE_DIR, STORAGE_MOUNT_PATH

app = FastAPI(title="TapFit Fitness Chat")
app.add_exception_handler(RequestValidationError, invalid_request_handler)


@app.on_event("startup")
def on_startup() -> None:
    create_tables()
    Path(STORAGE_DIR).expanduser().mkdir(parents=True, exist_ok=True)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "TapFit Fitness Chat API", "status": "ok"}


app.include_router(chat_router)
# Generated food photos; public URLs returned by LocalObjectStorage resolve here.
app.mount(STORAGE_MOUNT_PATH, StaticFiles(directory=STORAGE_DIR, check_dir=False), name="storage")
