"""
PersistsModel: the save/delete lifecycle.

``save()`` fires the halting ``saving`` hook, then takes the insert path
(``creating`` -> insert -> ``created``) for new models or the update path
(``updating`` -> minimal diff update -> ``updated``) for existing ones, and
finishes with ``saved``. Timestamps are added to the written values here,
never by altering the query collaborator. Storage failures are logged and
re-raised unchanged; a vetoed hook makes the operation return ``False``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

from ..database_errors import report_database_error
from ..exceptions import ModelNotFoundError
from ..query.builder import QueryBuilder

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)


class PersistsModel:
    """Insert, update, delete, soft delete, force delete and restore"""

    def fresh_timestamp(self) -> datetime:
        return datetime.now(timezone.utc)

    def uses_timestamps(self) -> bool:
        return type(self)._timestamps

    def update_timestamps(self) -> None:
        """Set the update (and, for new models, creation) timestamp unless already changed."""
        now = self.fresh_timestamp()
        updated_at = self.get_updated_at_column()
        if updated_at and not self.is_dirty(updated_at):
            self.set_attribute(updated_at, now)
        created_at = self.get_created_at_column()
        if not self._exists and created_at and not self.is_dirty(created_at):
            self.set_attribute(created_at, now)

    def _key_query(self) -> QueryBuilder:
        """Unscoped query for exactly this model's row."""
        cls = type(self)
        key = self._original.get(cls._primary_key, self.get_key())
        return cls.new_base_query().where(cls.get_qualified_key_name(), key)

    async def _execute(self, operation: str, call) -> Any:
        try:
            return await call
        except Exception as exc:
            report_database_error(exc, operation, type(self).__name__, {"key": self.get_key()})
            raise

    # Save

    async def save(self) -> bool:
        """
        Insert or update this model.

        Returns:
            ``True`` on success, ``False`` if a halting hook vetoed the save
        """
        if not await self.fire_model_event("saving"):
            return False

        if self._exists:
            saved = await self._perform_update()
            if saved:
                await self.fire_model_event("updated", halt=False)
                await self.fire_model_event("saved", halt=False)
            return saved

        saved = await self._perform_insert()
        if saved:
            await self.fire_model_event("created", halt=False)
            await self.fire_model_event("saved", halt=False)
        return saved

    async def _perform_insert(self) -> bool:
        if not await self.fire_model_event("creating"):
            return False

        if self.uses_timestamps():
            self.update_timestamps()

        cls = type(self)
        values = dict(self._attributes)
        query = cls.new_base_query()
        if cls._incrementing:
            if values.get(cls._primary_key) is None:
                values.pop(cls._primary_key, None)
            key = await self._execute("insert", query.insert_get_id(values, cls._primary_key))
            self.set_key(key)
        else:
            await self._execute("insert", query.insert(values))

        self._exists = True
        self._was_recently_created = True
        self._changes = {}
        self.sync_original()
        logger.debug(f"Inserted {cls.__name__} {self.get_key()!r}")
        return True

    async def _perform_update(self) -> bool:
        if not await self.fire_model_event("updating"):
            return False

        dirty = self.get_dirty()
        if not dirty:
            return True

        if self.uses_timestamps() and self.get_updated_at_column():
            self.update_timestamps()
            updated_at = self.get_updated_at_column()
            dirty[updated_at] = self._attributes[updated_at]

        affected = await self._execute("update", self._key_query().update(dirty))
        if affected != 1:
            logger.warning(f"Update of {type(self).__name__} {self.get_key()!r} affected {affected} rows")

        self._changes = dirty
        self.sync_original()
        return True

    async def update(self, attributes: Optional[Dict[str, Any]] = None) -> bool:
        """Fill ``attributes`` and save; no-op for models that do not exist yet."""
        if not self._exists:
            return False
        return await self.fill(attributes or {}).save()

    async def touch(self) -> bool:
        """Save with a fresh update timestamp even when nothing else changed."""
        if not self.uses_timestamps():
            return False
        self.set_attribute(self.get_updated_at_column(), self.fresh_timestamp())
        return await self.save()

    # Delete

    async def delete(self) -> bool:
        """
        Delete this model: soft when the type uses soft deletes, else hard.

        Returns:
            ``False`` when the model does not exist or ``deleting`` was vetoed
        """
        if not self._exists:
            return False

        if not await self.fire_model_event("deleting"):
            return False

        if type(self)._soft_deletes:
            return await self._run_soft_delete()

        await self._execute("delete", self._key_query().delete())
        self._exists = False
        await self.fire_model_event("deleted", halt=False)
        return True

    async def _run_soft_delete(self) -> bool:
        now = self.fresh_timestamp()
        deleted_at = self.get_deleted_at_column()
        self.set_attribute(deleted_at, now)
        values = {deleted_at: self._attributes[deleted_at]}

        updated_at = self.get_updated_at_column()
        if self.uses_timestamps() and updated_at:
            self.set_attribute(updated_at, now)
            values[updated_at] = self._attributes[updated_at]

        await self._execute("delete", self._key_query().update(values))
        self.sync_original()
        await self.fire_model_event("deleted", halt=False)
        return True

    async def force_delete(self) -> bool:
        """Remove the row regardless of soft deletes."""
        if not self._exists:
            return False

        await self._execute("delete", self._key_query().delete())
        self._exists = False
        await self.fire_model_event("force_deleted", halt=False)
        return True

    async def restore(self) -> bool:
        """Clear the deletion marker and save through the update path."""
        if not type(self)._soft_deletes or not self._exists:
            return False

        if not await self.fire_model_event("restoring"):
            return False

        self.set_attribute(self.get_deleted_at_column(), None)
        restored = await self.save()
        if restored:
            await self.fire_model_event("restored", halt=False)
        return restored

    def trashed(self) -> bool:
        """True when the deletion marker is set; issues no query."""
        if not type(self)._soft_deletes:
            return False
        return self._attributes.get(self.get_deleted_at_column()) is not None

    # Reload

    async def refresh(self) -> "Model":
        """Reload attributes (and loaded relations) from storage, including trashed rows."""
        if not self._exists:
            return self
        row = await self._execute("select", self._key_query().first())
        if row is None:
            raise ModelNotFoundError(type(self).__name__, self.get_key())

        self._attributes = {}
        self.force_fill(row, raw=True)
        self.sync_original()

        loaded = list(self._relations)
        self._relations = {}
        if loaded:
            await self.load(*loaded)
        return self

    async def fresh(self) -> Optional["Model"]:
        """A newly loaded instance of this model's row, or None."""
        if not self._exists:
            return None
        return await type(self).query().with_trashed().find(self.get_key())
