"""Mirror job snapshots to Redis so other processes can poll them."""

from __future__ import annotations

import logging
import ssl
from datetime import timedelta
from typing import Any

from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError

from idea_importer.api.schemas.job import ImportJobView
from idea_importer.core.config import Settings

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client, relaxing certificate checks for rediss:// hosts."""
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    client = Redis.from_url(url, **kwargs)

    if url.startswith("rediss://"):
        client.connection_pool.connection_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


class ProgressTracker:
    """Best-effort progress mirror; a missing or failing Redis never breaks imports."""

    def __init__(self, client: Redis | None, ttl: timedelta = PROGRESS_TTL) -> None:
        self.client = client
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def publish(self, view: ImportJobView) -> None:
        """Persist the latest snapshot under ``jobs:progress:<id>``."""
        if self.client is None:
            return
        try:
            self.client.set(
                _key(view.id),
                view.model_dump_json(by_alias=True),
                ex=max(int(self.ttl.total_seconds()), 1),
            )
        except RedisError as e:
            logger.warning(f"Failed to publish progress for job {view.id}: {e}")

    def fetch(self, job_id: str) -> ImportJobView | None:
        """Return the last mirrored snapshot, if any."""
        if self.client is None:
            return None
        try:
            raw = self.client.get(_key(job_id))
        except RedisError as e:
            logger.warning(f"Failed to fetch progress for job {job_id}: {e}")
            return None
        if not raw:
            return None
        try:
            return ImportJobView.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed progress payload for job {job_id}: {e}")
            return None


def create_progress_tracker(settings: Settings) -> ProgressTracker:
    if not settings.redis_url:
        return ProgressTracker(None)
    client = create_redis_client(settings.redis_url, decode_responses=True)
    return ProgressTracker(
        client, ttl=timedelta(seconds=settings.job_retention_seconds)
    )
