"""Celery tasks for share housekeeping."""
from __future__ import annotations

import os

from celery import Celery
from dotenv import load_dotenv

from medshare.app.domain.clock import utcnow
from medshare.app.infra.db import get_session
from medshare.app.services.expiry import ExpirySweeper
from medshare.app.services.telemetry import ShareAnalyticsService

load_dotenv()

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_BACKEND_URL = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1")

celery_app = Celery("medshare", broker=CELERY_BROKER_URL, backend=CELERY_BACKEND_URL)


@celery_app.task(name="shares.record_expirations")
def record_expirations() -> list[str]:
    """Write ``expired`` audit entries for grants that lapsed since the last run."""
    with get_session() as session:
        return ExpirySweeper(session).record_expirations(utcnow())


@celery_app.task(name="shares.snapshot_analytics")
def snapshot_analytics() -> str:
    """Store a share analytics snapshot."""
    with get_session() as session:
        snapshot = ShareAnalyticsService(session).snapshot(utcnow())
        return snapshot.id
