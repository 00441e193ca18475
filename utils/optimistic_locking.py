"""
Optimistic Locking Infrastructure
Version-based concurrency control so two writers cannot both move the same hold
(e.g. a double release, or a release racing a refund).
"""

import logging
from typing import Any, Dict, Optional, Type

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import Base
from utils.exception_handler import ConcurrentModification

logger = logging.getLogger(__name__)


def check_version(entity: Any, expected_version: Optional[int]) -> None:
    """In-memory guard: a caller that read version N may only write over version N"""
    if expected_version is None:
        return
    current = getattr(entity, "version", None)
    if current != expected_version:
        logger.warning(
            f"🔒 Optimistic lock conflict: {type(entity).__name__} id={getattr(entity, 'id', '?')} "
            f"expected_version={expected_version} current_version={current}"
        )
        raise ConcurrentModification(
            f"{type(entity).__name__} {getattr(entity, 'id', '')} was modified by another request",
            details={"expected_version": expected_version, "current_version": current},
        )


class OptimisticLockManager:
    """
    Manager for version-controlled UPDATEs against the relational store.
    The UPDATE only matches when the row still carries the version we last saw.
    """

    def __init__(self, session: Session):
        self.session = session

    def versioned_update(
        self,
        model_class: Type[Base],
        entity_id: Any,
        updates: Dict[str, Any],
        current_version: int,
    ) -> None:
        """
        Args:
            model_class: SQLAlchemy model class with `id` and `version` columns
            entity_id: Primary key value
            updates: Field updates; must include the new `version`
            current_version: Version the writer read

        Raises:
            ConcurrentModification: if the row moved on since it was read
        """
        stmt = (
            update(model_class)
            .where(model_class.id == entity_id, model_class.version == current_version)
            .values(**updates)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount == 0:
            logger.warning(
                f"🔒 Optimistic lock conflict: {model_class.__name__} id={entity_id} "
                f"expected_version={current_version}"
            )
            raise ConcurrentModification(
                f"Version conflict for {model_class.__name__} id={entity_id}: "
                f"expected version {current_version} but it was modified by another process",
                details={"expected_version": current_version},
            )

        logger.debug(
            f"✅ Versioned update: {model_class.__name__} id={entity_id} "
            f"v{current_version} → v{updates.get('version')}"
        )
