"""
Persistence Gateway

The only writer of establishments, menu items and photos.

Guarantees:
    - upsert_establishment is keyed on the external id when there is one and
      only overwrites columns for which the incoming record has a value
    - upsert_items is position-keyed and all-or-nothing; unchanged rows are
      not rewritten, so an identical re-run reports 0 rows written
    - every call runs in its own transaction

Integrity violations surface as PersistenceConflictError, any other
database failure as PersistenceError.

Usage:
    gateway = PersistenceGateway(get_session_maker())
    establishment_id = await gateway.upsert_establishment(record)
    written = await gateway.upsert_items(establishment_id, items)

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
import uuid
from typing import Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reconciler.core.exceptions import PersistenceConflictError, PersistenceError
from reconciler.models import Establishment, EstablishmentPhoto, MenuItem
from reconciler.pipeline.types import (
    CandidateRecord,
    DuplicateGroup,
    ExtractedItem,
    MenuLine,
    PhotoItem,
    RunMode,
    StoredEstablishment,
)

logger = logging.getLogger(__name__)

# Columns copied from a record when the incoming value is not None
_DETAIL_COLUMNS = ("address", "phone", "rating", "review_count", "latitude", "longitude")
_MENU_COLUMNS = ("name", "description", "price", "currency", "category", "image_url")
_PHOTO_COLUMNS = ("source_url", "reference", "width", "height", "is_enhanced")


def to_stored(row: Establishment) -> StoredEstablishment:
    return StoredEstablishment(
        id=row.id,
        name=row.name,
        external_id=row.external_id,
        address=row.address,
        phone=row.phone,
        rating=row.rating,
        review_count=row.review_count,
        latitude=row.latitude,
        longitude=row.longitude,
        created_at=row.created_at,
    )


def _record_values(record: CandidateRecord) -> dict:
    return {
        "address": record.address,
        "phone": record.phone,
        "rating": record.rating,
        "review_count": record.review_count,
        "latitude": record.geo.lat if record.geo else None,
        "longitude": record.geo.lng if record.geo else None,
    }


def _item_values(item: ExtractedItem) -> dict:
    if isinstance(item, MenuLine):
        return {column: getattr(item, column) for column in _MENU_COLUMNS}
    return {column: getattr(item, column) for column in _PHOTO_COLUMNS}


class PersistenceGateway:
    """
    Transactional writer for the reconciled catalog.

    Attributes:
        source: Provider name stored on newly created establishments
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        source: Optional[str] = None,
    ):
        self._session_maker = session_maker
        self.source = source

    # =========================================================================
    # ESTABLISHMENTS
    # =========================================================================

    async def upsert_establishment(
        self,
        record: CandidateRecord,
        existing_id: Optional[int] = None,
    ) -> int:
        """
        Insert or update the establishment behind a resolved record.

        Args:
            record: Matched candidate (after detail refresh)
            existing_id: Stored row to update instead of looking the record
                up by external id (set by the runner's duplicate check)

        Returns:
            int: Establishment id

        Raises:
            PersistenceConflictError: On a uniqueness violation
            PersistenceError: On any other database failure
        """
        # A concurrent insert of the same external id loses the race once
        # and then takes the update path.
        retried = False
        while True:
            try:
                return await self._upsert_establishment(record, existing_id)
            except IntegrityError as e:
                if retried or not record.external_id:
                    raise PersistenceConflictError(
                        f"Establishment '{record.display_name}' conflicts: {e.orig}"
                    ) from e
                retried = True
                logger.warning(
                    f"Conflict inserting {record.external_id}, retrying as update"
                )
            except SQLAlchemyError as e:
                raise PersistenceError(
                    f"Failed to store establishment '{record.display_name}': {e}"
                ) from e

    async def _upsert_establishment(
        self,
        record: CandidateRecord,
        existing_id: Optional[int],
    ) -> int:
        async with self._session_maker() as session:
            async with session.begin():
                row = None
                if existing_id is not None:
                    row = await session.get(Establishment, existing_id)
                    if row is None:
                        logger.warning(f"Establishment #{existing_id} vanished, upserting by key")
                if row is None and record.external_id:
                    row = (await session.execute(
                        select(Establishment).where(Establishment.external_id == record.external_id)
                    )).scalar_one_or_none()

                values = _record_values(record)
                if row is None:
                    row = Establishment(
                        record_key=record.external_id or f"local-{uuid.uuid4().hex}",
                        external_id=record.external_id or None,
                        source=self.source,
                        name=record.display_name,
                        **values,
                    )
                    session.add(row)
                    await session.flush()
                    logger.info(f"➕ Created establishment #{row.id} '{row.name}'")
                    return row.id

                if record.display_name and row.name != record.display_name:
                    row.name = record.display_name
                if record.external_id and not row.external_id:
                    row.external_id = record.external_id
                for column, value in values.items():
                    if value is not None and getattr(row, column) != value:
                        setattr(row, column, value)

                await session.flush()
                logger.debug(f"Updated establishment #{row.id} '{row.name}'")
                return row.id

    async def load_establishments(self) -> list[StoredEstablishment]:
        """Read every establishment, oldest first, for duplicate detection."""
        try:
            async with self._session_maker() as session:
                rows = (await session.execute(
                    select(Establishment).order_by(Establishment.created_at, Establishment.id)
                )).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load establishments: {e}") from e
        return [to_stored(row) for row in rows]

    async def get_establishment(self, establishment_id: int) -> Optional[StoredEstablishment]:
        try:
            async with self._session_maker() as session:
                row = await session.get(Establishment, establishment_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load establishment #{establishment_id}: {e}") from e
        return to_stored(row) if row else None

    # =========================================================================
    # ITEMS
    # =========================================================================

    async def upsert_items(
        self,
        establishment_id: int,
        items: Sequence[ExtractedItem],
    ) -> int:
        """
        Replace the ordered item list of an establishment.

        Rows are matched by position: identical rows are left alone, differing
        rows are updated, missing rows inserted and rows past the end of the
        new list deleted. An empty list is a no-op.

        Returns:
            int: Rows inserted or changed (0 on an identical re-run)
        """
        if not items:
            return 0

        if all(isinstance(item, MenuLine) for item in items):
            model = MenuItem
        elif all(isinstance(item, PhotoItem) for item in items):
            model = EstablishmentPhoto
        else:
            raise ValueError("upsert_items expects only menu lines or only photos")

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    written = await self._sync_items(session, model, establishment_id, items)
        except IntegrityError as e:
            raise PersistenceConflictError(
                f"Items of establishment #{establishment_id} conflict: {e.orig}"
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to store items of establishment #{establishment_id}: {e}"
            ) from e

        logger.info(
            f"💾 Establishment #{establishment_id}: {written}/{len(items)} "
            f"{model.__tablename__} rows written"
        )
        return written

    async def _sync_items(self, session, model, establishment_id, items) -> int:
        existing = {
            row.position: row
            for row in (await session.execute(
                select(model).where(model.establishment_id == establishment_id)
            )).scalars()
        }

        written = 0
        for position, item in enumerate(items):
            values = _item_values(item)
            row = existing.get(position)
            if row is None:
                session.add(model(establishment_id=establishment_id, position=position, **values))
                written += 1
                continue
            changed = {k: v for k, v in values.items() if getattr(row, k) != v}
            if changed:
                for column, value in changed.items():
                    setattr(row, column, value)
                written += 1

        stale = [p for p in existing if p >= len(items)]
        if stale:
            await session.execute(
                delete(model).where(
                    model.establishment_id == establishment_id,
                    model.position >= len(items),
                )
            )
            logger.debug(f"Removed {len(stale)} stale {model.__tablename__} rows")

        return written

    async def count_items(
        self,
        establishment_id: int,
        mode: Optional[RunMode] = None,
    ) -> int:
        """Count stored items; both kinds unless `mode` picks one."""
        models = {
            RunMode.MENUS: (MenuItem,),
            RunMode.PHOTOS: (EstablishmentPhoto,),
        }.get(mode, (MenuItem, EstablishmentPhoto))

        try:
            async with self._session_maker() as session:
                total = 0
                for model in models:
                    total += (await session.execute(
                        select(func.count()).select_from(model)
                        .where(model.establishment_id == establishment_id)
                    )).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count items of #{establishment_id}: {e}") from e
        return total

    # =========================================================================
    # DUPLICATE MERGE
    # =========================================================================

    async def merge_duplicate_group(self, group: DuplicateGroup) -> dict:
        """
        Fold a duplicate group into its canonical establishment.

        In one transaction: canonical gaps are filled from the members (in
        member order), the item lists of the first member that has them are
        adopted when the canonical has none, then the members are deleted.

        Returns:
            dict: canonical_id, deleted member ids, adopted item counts
        """
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    return await self._merge(session, group)
        except IntegrityError as e:
            raise PersistenceConflictError(
                f"Merging into #{group.canonical_id} conflicts: {e.orig}"
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to merge group #{group.canonical_id}: {e}") from e

    async def _merge(self, session: AsyncSession, group: DuplicateGroup) -> dict:
        canonical = await session.get(Establishment, group.canonical_id)
        if canonical is None:
            raise PersistenceError(f"Canonical establishment #{group.canonical_id} not found")

        members = []
        for member_id in group.member_ids:
            member = await session.get(Establishment, member_id)
            if member is None:
                logger.warning(f"Duplicate #{member_id} already gone, skipping")
                continue
            members.append(member)

        adopted = {}
        inherited_external_id = None
        for model in (MenuItem, EstablishmentPhoto):
            adopted[model.__tablename__] = 0
            if await self._has_items(session, model, canonical.id):
                continue
            for member in members:
                if await self._has_items(session, model, member.id):
                    result = await session.execute(
                        update(model)
                        .where(model.establishment_id == member.id)
                        .values(establishment_id=canonical.id)
                    )
                    adopted[model.__tablename__] = result.rowcount
                    break

        for member in members:
            for column in _DETAIL_COLUMNS:
                if getattr(canonical, column) is None and getattr(member, column) is not None:
                    setattr(canonical, column, getattr(member, column))
            if not canonical.external_id and not inherited_external_id and member.external_id:
                inherited_external_id = member.external_id

        member_ids = [m.id for m in members]
        if member_ids:
            for model in (MenuItem, EstablishmentPhoto):
                await session.execute(delete(model).where(model.establishment_id.in_(member_ids)))
            await session.execute(delete(Establishment).where(Establishment.id.in_(member_ids)))
            await session.flush()

        # The unique external id can only move once its owner is deleted
        if inherited_external_id:
            canonical.external_id = inherited_external_id

        logger.info(
            f"🔗 Merged {member_ids} into #{canonical.id} '{canonical.name}' ({group.reason})"
        )
        return {
            "canonical_id": canonical.id,
            "deleted_ids": member_ids,
            "adopted": adopted,
        }

    async def _has_items(self, session: AsyncSession, model, establishment_id: int) -> bool:
        count = (await session.execute(
            select(func.count()).select_from(model)
            .where(model.establishment_id == establishment_id)
        )).scalar_one()
        return count > 0
