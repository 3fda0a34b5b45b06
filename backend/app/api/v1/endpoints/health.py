from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.responses import ok

router = APIRouter(prefix="/health")


@router.get("")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return ok({"status": "ok"})
