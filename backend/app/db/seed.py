from __future__ import annotations

import logging

from sqlalchemy import select

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Site
from backend.app.db.models.core_types import SiteType

logger = logging.getLogger(__name__)

DEFAULT_SITES = [
    ("Entrepôt", SiteType.storage),
    ("Sortie", SiteType.exit),
]


def run_seed() -> None:
    db = SessionLocal()
    try:
        for name, site_type in DEFAULT_SITES:
            site = db.scalar(select(Site).where(Site.name == name))
            if not site:
                db.add(Site(name=name, type=site_type, is_active=True))
                logger.info("Site %s created", name)
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seed()
