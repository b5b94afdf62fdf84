"""Record sinks: durable creation of one idea per validated row."""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Protocol

from sqlalchemy import or_, select
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from idea_importer.api.schemas.idea import IdeaCreate, IdeaReference
from idea_importer.core.config import Settings
from idea_importer.db.models.idea import Idea

logger = logging.getLogger(__name__)


class SinkError(Exception):
    """Creating a record failed.

    ``retryable`` separates transient failures (lost connection) from
    permanent ones (uniqueness conflict, rejected value).
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class RecordSink(Protocol):
    def create(self, command: IdeaCreate) -> IdeaReference: ...


class SqlAlchemyIdeaSink:
    """Insert one ``Idea`` per call inside its own transaction."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        max_slug_attempts: int = 50,
    ) -> None:
        self._session_factory = session_factory
        self._max_slug_attempts = max_slug_attempts

    def create(self, command: IdeaCreate) -> IdeaReference:
        session = self._session_factory()
        try:
            attempt = 0
            while True:
                attempt += 1
                # Each lost race means another row took the slug; past the
                # suffix budget a random suffix is used
                if attempt <= self._max_slug_attempts:
                    slug = self.available_slug(session, command.slug)
                else:
                    slug = _random_slug(command.slug)
                idea = self._build(command, slug)
                idea_id = idea.id
                session.add(idea)
                try:
                    session.commit()
                    return IdeaReference(id=idea_id, slug=slug)
                except IntegrityError as e:
                    session.rollback()
                    if attempt > self._max_slug_attempts or not self._slug_taken(
                        session, slug
                    ):
                        raise SinkError(
                            f"Idea conflicts with an existing record: {_short(e)}"
                        ) from e
                    logger.debug(f"Slug '{slug}' claimed concurrently, retrying")
        except SinkError:
            raise
        except (OperationalError, DisconnectionError, InterfaceError) as e:
            session.rollback()
            logger.warning(f"Transient database error creating idea: {e}")
            raise SinkError(f"Database unavailable: {_short(e)}", retryable=True) from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error creating idea: {e}", exc_info=True)
            raise SinkError(f"Database error: {_short(e)}") from e
        finally:
            session.close()

    def available_slug(self, session: Session, base: str) -> str:
        """Return ``base`` or the first free ``base-N`` suffix."""
        taken = set(
            session.execute(
                select(Idea.slug).where(
                    or_(Idea.slug == base, Idea.slug.like(f"{base}-%"))
                )
            ).scalars()
        )
        if base not in taken:
            return base
        for counter in range(1, self._max_slug_attempts + 1):
            candidate = f"{base}-{counter}"
            if candidate not in taken:
                return candidate
        return _random_slug(base)

    def _slug_taken(self, session: Session, slug: str) -> bool:
        return session.execute(
            select(Idea.id).where(Idea.slug == slug).limit(1)
        ).first() is not None

    @staticmethod
    def _build(command: IdeaCreate, slug: str) -> Idea:
        return Idea(
            id=str(uuid.uuid4()),
            title=command.title,
            slug=slug,
            description=command.description,
            content=command.content,
            type=command.type,
            market=command.market,
            target_audience=command.target_audience,
            problem=command.problem,
            solution=command.solution,
            keyword=command.keyword,
            preview_url=command.preview_url,
            image_url=command.image_url,
            opportunity_score=command.opportunity_score,
            problem_score=command.problem_score,
            feasibility_score=command.feasibility_score,
            timing_score=command.timing_score,
            revenue_potential=command.revenue_potential,
            is_published=command.is_published,
            is_featured=command.is_featured,
            signal_badges=command.signal_badges,
            framework_data=command.framework_data,
            source_type="user_import",
            source_data=command.extra_fields or None,
        )


class RetryingSink:
    """Retry retryable ``SinkError``s a bounded number of times.

    The same policy applies to every row of a job; once attempts run out the
    last error propagates and the row is recorded as failed.
    """

    def __init__(
        self,
        inner: RecordSink,
        *,
        max_attempts: int = 2,
        backoff_seconds: float = 0.2,
    ) -> None:
        self._inner = inner
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def create(self, command: IdeaCreate) -> IdeaReference:
        retrying = Retrying(
            retry=retry_if_exception(
                lambda exc: isinstance(exc, SinkError) and exc.retryable
            ),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=10),
            before_sleep=lambda retry_state: logger.warning(
                f"Retrying idea '{command.slug}' "
                f"(attempt {retry_state.attempt_number}/{self.max_attempts})"
            ),
            reraise=True,
        )
        return retrying(self._inner.create, command)


def build_record_sink(
    settings: Settings, session_factory: Callable[[], Session]
) -> RecordSink:
    """Durable sink, wrapped with the configured retry policy."""
    sink: RecordSink = SqlAlchemyIdeaSink(
        session_factory, max_slug_attempts=settings.max_slug_attempts
    )
    if settings.sink_max_attempts > 1:
        sink = RetryingSink(
            sink,
            max_attempts=settings.sink_max_attempts,
            backoff_seconds=settings.sink_retry_backoff_seconds,
        )
    return sink


def _random_slug(base: str) -> str:
    return f"{base}-{uuid.uuid4().hex[:8]}"


def _short(exc: Exception) -> str:
    orig = getattr(exc, "orig", None)
    text = str(orig if orig is not None else exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__
