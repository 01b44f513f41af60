"""
Create helpers that survive concurrent inserts
"""
import logging
from typing import Callable, Optional, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from geofine.core.errors import ResolutionRaceError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def create_or_reread(db: Session, instance: T, reread: Callable[[], Optional[T]]) -> Tuple[T, bool]:
    """
    Insert `instance`; if a unique constraint says someone else already
    did, return their row instead.

    Returns:
        (row, created) tuple

    Raises:
        ResolutionRaceError: the insert conflicted but nothing can be re-read
    """
    try:
        db.add(instance)
        db.commit()
        return instance, True
    except IntegrityError as e:
        db.rollback()
        existing = reread()
        if existing is None:
            raise ResolutionRaceError(f"Create of {type(instance).__name__} conflicted: {e.orig}") from e
        logger.info(f"{type(instance).__name__} created concurrently; reusing id={existing.id}")
        return existing, False
