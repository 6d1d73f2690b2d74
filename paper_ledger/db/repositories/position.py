"""
Position Repository

Database operations for the open-position table and the closed log.
"""
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from paper_ledger.core.models import Position, PositionStatus
from paper_ledger.core.trading.position_ledger import PositionLedger
from paper_ledger.db.models.position import OpenPositionRecord, ClosedPositionRecord
from paper_ledger.utils.exceptions import ValidationError


class PositionRepository:
    """
    Repository for position persistence.

    Works on copies handed out by the ledger and is never called while
    the ledger lock is held.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert_open(self, position: Position) -> bool:
        """
        Insert or overwrite the open-table row for position.

        Copies can reach the repository out of order when ticks and closes
        for one position run concurrently. A copy is dropped when the
        position is already in the closed log, or when the stored row
        carries a later version.

        Returns:
            True if the row was written
        """
        if await self.db.get(ClosedPositionRecord, position.id) is not None:
            logger.warning(f"Ignoring open-table write for closed position {position.id}")
            return False

        record = await self.db.get(OpenPositionRecord, position.id)
        if record is None:
            self.db.add(OpenPositionRecord.from_domain(position))
        elif record.version > position.version:
            logger.debug(
                f"Ignoring stale write for {position.id}: "
                f"v{position.version} < stored v{record.version}"
            )
            return False
        else:
            record.update_from(position)
        await self.db.commit()
        return True

    async def delete_open(self, position_id: str) -> bool:
        """Remove a row from the open table. Returns False if absent."""
        result = await self.db.execute(
            delete(OpenPositionRecord).where(OpenPositionRecord.id == position_id)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def append_closed(self, position: Position) -> None:
        """
        Move a closed position into the closed log.

        The open-table row is removed in the same transaction. Appending
        an id already in the log is ignored.
        """
        if position.status != PositionStatus.CLOSED:
            raise ValidationError(message=f"Position {position.id} is not closed")

        existing = await self.db.get(ClosedPositionRecord, position.id)
        if existing is not None:
            logger.warning(f"Closed log already holds {position.id}, skipping append")
            return

        await self.db.execute(
            delete(OpenPositionRecord).where(OpenPositionRecord.id == position.id)
        )
        self.db.add(ClosedPositionRecord.from_domain(position))
        await self.db.commit()

        logger.info(f"Persisted closed position {position.id} ({position.exit_reason.value})")

    async def load_open(self) -> List[Position]:
        """Load open positions in entry order."""
        result = await self.db.execute(
            select(OpenPositionRecord).order_by(
                OpenPositionRecord.entry_timestamp, OpenPositionRecord.id
            )
        )
        return [record.to_domain() for record in result.scalars().all()]

    async def load_closed(self) -> List[Position]:
        """Load the closed log in exit order."""
        result = await self.db.execute(
            select(ClosedPositionRecord).order_by(
                ClosedPositionRecord.exit_timestamp, ClosedPositionRecord.id
            )
        )
        return [record.to_domain() for record in result.scalars().all()]

    async def load_ledger(self, ledger: Optional[PositionLedger] = None) -> PositionLedger:
        """
        Rebuild a ledger from persisted state.

        Args:
            ledger: Empty ledger to restore into; a new one if omitted

        Returns:
            The restored ledger
        """
        if ledger is None:
            ledger = PositionLedger()
        open_positions = await self.load_open()
        closed_history = await self.load_closed()
        ledger.restore(open_positions, closed_history)
        return ledger


def get_position_repository(db: AsyncSession) -> PositionRepository:
    """Factory function to create PositionRepository."""
    return PositionRepository(db)
