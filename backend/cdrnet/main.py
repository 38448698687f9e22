from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .db import get_connection
from .routers import events, network

settings = get_settings()

logging.basicConfig(level=settings.log_level.upper())

app = FastAPI(title="CDR Network Explorer", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def ensure_database() -> None:
    with get_connection() as conn:
        conn.execute("SELECT 1")


@app.get("/")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(events.router)
app.include_router(network.router)
