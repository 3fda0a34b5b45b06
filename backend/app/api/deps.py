from __future__ import annotations

from datetime import date
from typing import Generator

from fastapi import Header, Request

from backend.app.db.session import SessionLocal
from backend.services.events import Actor, EventPublisher


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.publisher


def get_today() -> date:
    return date.today()


def get_actor(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    user_email: str | None = Header(default=None, alias="X-User-Email"),
) -> Actor | None:
    # identité transmise par le proxy, non vérifiée ici
    if not user_id and not user_email:
        return None
    return Actor(id=user_id or "", email=user_email or "")
