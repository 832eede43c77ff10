from __future__ import annotations

import datetime
import logging
from typing import List, Optional

from sqlalchemy import select

from database import Event, ensure_aware

logger = logging.getLogger(__name__)


def archive_past_events(session, now: Optional[datetime.datetime] = None) -> List[int]:
    """Mark every active event dated strictly before `now` as archived.

    Archived events are never touched again, so repeated sweeps are no-ops.
    Returns the ids archived by this sweep.
    """
    cutoff = ensure_aware(now or datetime.datetime.now(datetime.timezone.utc))
    stmt = select(Event).where(Event.is_archived == False, Event.date < cutoff)  # noqa: E712
    archived: List[int] = []
    for event in session.scalars(stmt):
        event.is_archived = True
        archived.append(event.id)
    if archived:
        session.commit()
        logger.info("Archived %d past event(s): %s", len(archived), archived)
    return archived
