"""
Back2U — Lost/Found Matching Pipeline

Orchestrates one matching invocation for a source item:
  Stage 1: Candidate Selector — up to 50 active items of the opposite
           category owned by someone else (one store read).
  Stage 2: Match Scorer — delegated to the injected ``MatchScorer``.
  Stage 3: Match Recorder & Notifier — for every entry scoring at least
           ``MATCH_THRESHOLD``, normalise the pair to (lost, found), insert a
           ``pending`` record unless one already exists, then notify both
           item owners.

Everything is awaited sequentially; the only shared state between
invocations is the database.  The existing-record lookup is backed by the
``uq_item_match_pair`` unique constraint: a constraint violation on insert
means a concurrent invocation recorded the pair first and is skipped like
any other duplicate.

Each insert is committed on its own, so a persistence failure part-way
through leaves earlier records in place.  Notification failures are logged
and never affect the match record or the other party's notification.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from back2u.models.item import Item, ItemCategory, ItemStatus
from back2u.models.match import ItemMatch, MatchStatus
from back2u.schemas.notification import NotificationRequest
from back2u.services.errors import (
    ItemNotFoundError,
    MatchNotFoundError,
    NotificationError,
    PersistenceError,
)

logger = structlog.get_logger("back2u.matching_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

MATCH_THRESHOLD = 0.5
CANDIDATE_LIMIT = 50
MATCH_NOTIFICATION_TITLE = "Potential Match Found!"


class MatchingService:
    """Candidate selection, scoring and match recording for one item.

    Dependencies are injected at construction so that the service can be
    tested with mocks and swapped in FastAPI's dependency-injection graph.
    """

    def __init__(self, scorer: Any, dispatcher: Any | None = None) -> None:
        """
        Parameters
        ----------
        scorer:
            A ``MatchScorer`` (oracle or heuristic).
        dispatcher:
            A ``NotificationDispatcher``.  When ``None`` no notifications
            are sent.
        """
        self.scorer = scorer
        self.dispatcher = dispatcher

        logger.info(
            "matching_service_initialised",
            scorer=type(scorer).__name__,
            dispatcher=type(dispatcher).__name__ if dispatcher else None,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def find_matches(self, item_id: uuid.UUID | str, db_session: AsyncSession) -> list[dict]:
        """Run the full pipeline for ``item_id``.

        Returns
        -------
        list[dict]
            Every scored entry returned by the scorer, including those below
            the threshold and those already recorded.

        Raises
        ------
        ItemNotFoundError
            ``item_id`` does not resolve; nothing is written.
        ScoringUnavailableError
            The scorer could not be reached.
        PersistenceError
            A store read or write failed.
        """
        log = logger.bind(item_id=str(item_id))
        log.info("find_matches_start")

        source, candidates = await self.select_candidates(item_id, db_session)
        if not candidates:
            log.info("find_matches_no_candidates")
            return []

        log.info("candidates_selected", candidate_count=len(candidates))

        scored = await self.scorer.score(source, candidates)
        log.info("candidates_scored", scored_count=len(scored))

        recorded = await self.record_matches(source, candidates, scored, db_session)

        log.info("find_matches_complete", returned=len(scored), recorded=recorded)
        return scored

    # ── Stage 1: Candidate Selector ───────────────────────────────────────

    async def select_candidates(
        self,
        item_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> tuple[Item, list[Item]]:
        """Load the source item and its counterpart candidates.

        A string that is not a UUID cannot name an item and is reported as
        not found without querying the store.
        """
        try:
            source_id = item_id if isinstance(item_id, uuid.UUID) else uuid.UUID(str(item_id))
        except ValueError:
            logger.warning("source_item_id_malformed", item_id=str(item_id))
            raise ItemNotFoundError(item_id) from None

        try:
            result = await db_session.execute(select(Item).where(Item.id == source_id))
            source = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Error loading item: {exc}") from exc

        if source is None:
            logger.warning("source_item_not_found", item_id=str(item_id))
            raise ItemNotFoundError(item_id)

        opposite = ItemCategory(source.category).opposite

        stmt = (
            select(Item)
            .where(
                Item.category == opposite.value,
                Item.status == ItemStatus.ACTIVE.value,
                Item.user_id != source.user_id,
            )
            .limit(CANDIDATE_LIMIT)
        )
        try:
            result = await db_session.execute(stmt)
            candidates = list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.error("candidate_query_failed", item_id=str(item_id), error=str(exc))
            raise PersistenceError(f"Error fetching potential matches: {exc}") from exc

        return source, candidates

    # ── Stage 3: Match Recorder & Notifier ────────────────────────────────

    async def record_matches(
        self,
        source: Item,
        candidates: list[Item],
        scored: list[dict],
        db_session: AsyncSession,
    ) -> int:
        """Persist qualifying matches and notify both parties.

        Returns the number of newly inserted match records.
        """
        by_id = {str(c.id): c for c in candidates}
        inserted = 0

        for entry in scored:
            score = entry.get("score")
            if not isinstance(score, (int, float)) or score < MATCH_THRESHOLD:
                continue

            counterpart = by_id.get(str(entry.get("item_id")))
            if counterpart is None:
                logger.warning("scored_entry_unknown_item", item_id=entry.get("item_id"))
                continue

            lost_item, found_item = self.normalise_pair(source, counterpart)

            match = await self._insert_if_absent(
                lost_item, found_item, float(score), entry.get("reason"), db_session
            )
            if match is None:
                continue

            inserted += 1
            await self._notify_parties(lost_item, found_item)

        return inserted

    @staticmethod
    def normalise_pair(source: Item, counterpart: Item) -> tuple[Item, Item]:
        """Return ``(lost_item, found_item)`` whichever side was the source."""
        if source.category == ItemCategory.LOST.value:
            return source, counterpart
        return counterpart, source

    async def _insert_if_absent(
        self,
        lost_item: Item,
        found_item: Item,
        score: float,
        reason: str | None,
        db_session: AsyncSession,
    ) -> ItemMatch | None:
        log = logger.bind(lost_item_id=str(lost_item.id), found_item_id=str(found_item.id))

        try:
            if await self._find_existing(lost_item.id, found_item.id, db_session) is not None:
                log.info("match_already_exists")
                return None

            match = ItemMatch(
                lost_item_id=lost_item.id,
                found_item_id=found_item.id,
                match_score=score,
                match_reason=reason,
                status=MatchStatus.PENDING.value,
            )
            try:
                async with db_session.begin_nested():
                    db_session.add(match)
            except IntegrityError:
                log.info("match_inserted_concurrently")
                return None

            await db_session.commit()
        except SQLAlchemyError as exc:
            log.error("match_insert_failed", error=str(exc))
            raise PersistenceError(f"Error inserting match: {exc}") from exc

        log.info("match_recorded", match_id=str(match.id), score=score)
        return match

    @staticmethod
    async def _find_existing(
        lost_item_id: uuid.UUID,
        found_item_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> uuid.UUID | None:
        result = await db_session.execute(
            select(ItemMatch.id).where(
                ItemMatch.lost_item_id == lost_item_id,
                ItemMatch.found_item_id == found_item_id,
            )
        )
        return result.scalar_one_or_none()

    async def _notify_parties(self, lost_item: Item, found_item: Item) -> None:
        """Send one notification to each item owner, independently."""
        if self.dispatcher is None:
            return

        requests = [
            self._build_notification(recipient_item=found_item, other_item=lost_item),
            self._build_notification(recipient_item=lost_item, other_item=found_item),
        ]
        for request in requests:
            try:
                await self.dispatcher.dispatch(request)
            except NotificationError as exc:
                logger.error(
                    "match_notification_failed",
                    user_id=str(request.user_id),
                    item_id=str(request.item_id),
                    error=str(exc),
                )
            except Exception:
                logger.exception(
                    "match_notification_unexpected_error",
                    user_id=str(request.user_id),
                    item_id=str(request.item_id),
                )

        logger.info(
            "match_notifications_dispatched",
            lost_item_id=str(lost_item.id),
            found_item_id=str(found_item.id),
        )

    @staticmethod
    def _build_notification(recipient_item: Item, other_item: Item) -> NotificationRequest:
        return NotificationRequest(
            type="match",
            user_id=recipient_item.user_id,
            title=MATCH_NOTIFICATION_TITLE,
            message=(
                f'Your {recipient_item.category} item "{recipient_item.title}" '
                f'might match a {other_item.category} item: "{other_item.title}"'
            ),
            item_id=recipient_item.id,
            related_item_id=other_item.id,
            send_email=True,
        )

    # ── Match review ──────────────────────────────────────────────────────

    async def list_matches(
        self,
        db_session: AsyncSession,
        item_id: uuid.UUID | None = None,
    ) -> list[ItemMatch]:
        """Non-dismissed matches, best score first, optionally for one item."""
        stmt = (
            select(ItemMatch)
            .where(ItemMatch.status != MatchStatus.DISMISSED.value)
            .order_by(ItemMatch.match_score.desc())
        )
        if item_id is not None:
            stmt = stmt.where(
                or_(ItemMatch.lost_item_id == item_id, ItemMatch.found_item_id == item_id)
            )
        result = await db_session.execute(stmt)
        return list(result.scalars().all())

    async def update_status(
        self,
        match_id: uuid.UUID,
        status: MatchStatus,
        db_session: AsyncSession,
    ) -> ItemMatch:
        result = await db_session.execute(select(ItemMatch).where(ItemMatch.id == match_id))
        match = result.scalar_one_or_none()
        if match is None:
            raise MatchNotFoundError(match_id)

        match.status = MatchStatus(status).value
        await db_session.flush()
        logger.info("match_status_updated", match_id=str(match_id), status=match.status)
        return match
