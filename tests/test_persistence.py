"""
Tests for the save/delete lifecycle: insert and update branching, minimal
diffs, timestamps, vetoes, soft deletes, restore and reloads.
"""

import logging
from datetime import datetime, timezone

import pytest

from starorm import MemoryConnection, Model, ModelNotFoundError, QueryError, registry

from models import Comment, Order, Tag


class TestOrderLifecycle:
    @pytest.mark.asyncio
    async def test_order_scenario(self, connection):
        """create -> update one field -> soft delete -> only visible as trashed"""
        order = await Order.create({"total": 100, "status": "pending"})
        assert order.exists
        assert order.id == 1
        assert order.was_recently_created

        connection.clear_log()
        order.status = "paid"
        assert await order.save()

        updates = connection.queries("update", "orders")
        assert len(updates) == 1, "Exactly one update expected"
        assert set(updates[0].values) == {"status", "updated_at"}

        assert await order.delete()
        rows = connection.rows("orders")
        assert len(rows) == 1, "Soft delete keeps the row"
        assert rows[0]["deleted_at"] is not None

        assert await Order.find(order.id) is None
        trashed = await Order.only_trashed().first()
        assert trashed is not None
        assert trashed.total == 100
        assert trashed.status == "paid"
        assert trashed.trashed()

    @pytest.mark.asyncio
    async def test_second_save_without_changes_writes_nothing(self, connection):
        order = await Order.create({"total": 1, "status": "a"})
        connection.clear_log()

        assert await order.save()
        assert connection.queries("update") == []
        assert connection.queries("insert") == []

    @pytest.mark.asyncio
    async def test_new_model_inserts_then_updates(self, connection):
        order = Order({"total": 5})
        assert not order.exists

        await order.save()
        assert order.exists
        assert len(connection.queries("insert", "orders")) == 1

        order.total = 6
        await order.save()
        assert len(connection.queries("insert", "orders")) == 1, "Existing models never insert"
        assert connection.rows("orders")[0]["total"] == 6
        assert order.get_changes().keys() == {"total", "updated_at"}
        assert order.was_changed("total")
        assert order.is_clean()


class TestTimestamps:
    @pytest.mark.asyncio
    async def test_insert_sets_both_timestamps(self):
        order = await Order.create({"total": 1})
        assert isinstance(order.created_at, datetime)
        assert order.created_at == order.updated_at

    @pytest.mark.asyncio
    async def test_explicit_created_at_is_kept(self):
        moment = datetime(2020, 1, 1)
        order = Order({"total": 1})
        order.created_at = moment
        await order.save()
        assert order.created_at == moment.replace(tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_timestamps_disabled(self, connection):
        await Tag.create({"name": "python"})
        assert connection.rows("tags") == [{"name": "python", "id": 1}]

    @pytest.mark.asyncio
    async def test_touch_refreshes_updated_at(self, connection):
        order = await Order.create({"total": 1})
        order.updated_at = datetime(2000, 1, 1)
        order.sync_original()

        assert await order.touch()
        assert order.updated_at.year > 2000
        assert connection.rows("orders")[0]["updated_at"] == order.get_raw_attribute("updated_at")

    @pytest.mark.asyncio
    async def test_naive_values_sort_and_filter_with_automatic_timestamps(self):
        old = Order({"total": 1})
        old.created_at = "2020-01-01T00:00:00"
        await old.save()
        new = await Order.create({"total": 2})

        assert old.created_at.tzinfo is timezone.utc
        assert old.created_at < new.created_at

        assert (await Order.query().oldest().get()).pluck("total") == [1, 2]
        assert (await Order.query().latest().get()).pluck("total") == [2, 1]
        assert (await Order.where("created_at", ">", datetime(2020, 6, 1)).get()).pluck("total") == [2]
        assert (await Order.where("created_at", datetime(2020, 1, 1)).get()).pluck("total") == [1]

    @pytest.mark.asyncio
    async def test_naive_rows_written_directly_compare_as_utc(self, connection):
        await connection.table("orders").insert({"total": 9, "created_at": datetime(2019, 1, 1)})
        await Order.create({"total": 2})

        assert (await Order.query().oldest().get()).pluck("total") == [9, 2]
        first = await Order.query().oldest().first()
        assert first.created_at == datetime(2019, 1, 1, tzinfo=timezone.utc)


class TestEvents:
    @pytest.mark.asyncio
    async def test_event_order_for_insert_and_update(self, dispatcher):
        fired = []
        dispatcher.listen("model.*: Order", lambda model: fired.append(model.get_original("status")))
        names = []
        for event in ("saving", "creating", "created", "updating", "updated", "saved"):
            Order.on(event, lambda model, event=event: names.append(event))

        order = await Order.create({"total": 1, "status": "new"})
        assert names == ["saving", "creating", "created", "saved"]

        names.clear()
        order.status = "paid"
        await order.save()
        assert names == ["saving", "updating", "updated", "saved"]
        assert fired, "Wildcard listener should see every event"

    @pytest.mark.asyncio
    async def test_saving_veto_skips_storage(self, connection):
        Order.on("saving", lambda model: False)
        order = Order({"total": 1})

        assert await order.save() is False
        assert not order.exists
        assert connection.query_log == []

    @pytest.mark.asyncio
    async def test_creating_veto(self, connection):
        Order.on("creating", lambda model: False)
        created = []
        Order.on("created", created.append)

        assert await Order({"total": 1}).save() is False
        assert created == []
        assert connection.rows("orders") == []

    @pytest.mark.asyncio
    async def test_updating_veto_keeps_changes_dirty(self, connection):
        order = await Order.create({"total": 1})
        Order.on("updating", lambda model: False)

        order.total = 2
        assert await order.save() is False
        assert order.is_dirty("total")
        assert connection.rows("orders")[0]["total"] == 1

    @pytest.mark.asyncio
    async def test_async_listener_can_mutate_before_insert(self, connection):
        async def default_status(order):
            if order.status is None:
                order.status = "new"

        Order.on("creating", default_status)
        await Order.create({"total": 1})
        assert connection.rows("orders")[0]["status"] == "new"

    @pytest.mark.asyncio
    async def test_retrieved_fires_per_hydrated_model(self):
        await Order.create({"total": 1})
        await Order.create({"total": 2})
        seen = []
        Order.on("retrieved", lambda model: seen.append(model.total))

        await Order.all()
        assert sorted(seen) == [1, 2]

    def test_unknown_event_is_rejected(self):
        with pytest.raises(ValueError):
            Order.on("exploded", lambda model: None)


class TestDelete:
    @pytest.mark.asyncio
    async def test_hard_delete(self, connection):
        comment = await Comment.create({"body": "hi"})
        deleted = []
        Comment.on("deleted", deleted.append)

        assert await comment.delete()
        assert not comment.exists
        assert connection.rows("comments") == []
        assert deleted == [comment]

    @pytest.mark.asyncio
    async def test_delete_unsaved_model_is_noop(self, connection):
        assert await Comment({"body": "x"}).delete() is False
        assert connection.query_log == []

    @pytest.mark.asyncio
    async def test_deleting_veto(self, connection):
        order = await Order.create({"total": 1})
        Order.on("deleting", lambda model: False)

        assert await order.delete() is False
        assert connection.rows("orders")[0].get("deleted_at") is None

    @pytest.mark.asyncio
    async def test_soft_delete_updates_exactly_one_row(self, connection):
        first = await Order.create({"total": 1})
        await Order.create({"total": 2})
        connection.clear_log()

        await first.delete()
        updates = connection.queries("update", "orders")
        assert len(updates) == 1
        assert set(updates[0].values) == {"deleted_at", "updated_at"}
        assert first.exists, "Soft-deleted models still exist"
        assert first.is_clean()
        assert [row.get("deleted_at") is None for row in connection.rows("orders")] == [False, True]

    @pytest.mark.asyncio
    async def test_force_delete_removes_soft_deleted_row(self, connection):
        order = await Order.create({"total": 1})
        await order.delete()
        fired = []
        Order.on("force_deleted", fired.append)

        assert await order.force_delete()
        assert connection.rows("orders") == []
        assert fired == [order]

    @pytest.mark.asyncio
    async def test_restore(self, connection):
        order = await Order.create({"total": 1})
        await order.delete()
        restored = []
        Order.on("restored", restored.append)

        assert await order.restore()
        assert not order.trashed()
        assert connection.rows("orders")[0].get("deleted_at") is None
        assert (await Order.find(order.id)) is not None
        assert restored == [order]

    @pytest.mark.asyncio
    async def test_restoring_veto(self):
        order = await Order.create({"total": 1})
        await order.delete()
        Order.on("restoring", lambda model: False)

        assert await order.restore() is False
        assert order.trashed()

    @pytest.mark.asyncio
    async def test_restore_without_soft_deletes(self):
        comment = await Comment.create({"body": "x"})
        assert await comment.restore() is False
        assert not comment.trashed()

    @pytest.mark.asyncio
    async def test_restore_on_unsaved_model_does_not_insert(self, connection):
        fired = []
        Order.on("restoring", fired.append)
        order = Order({"total": 1})

        assert await order.restore() is False
        assert not order.exists
        assert fired == []
        assert connection.rows("orders") == []

    @pytest.mark.asyncio
    async def test_destroy_by_keys(self, connection):
        for body in ("a", "b", "c"):
            await Comment.create({"body": body})

        assert await Comment.destroy(1, [3]) == 2
        assert [row["body"] for row in connection.rows("comments")] == ["b"]
        assert await Comment.destroy() == 0


class TestFinders:
    @pytest.mark.asyncio
    async def test_find_or_fail(self):
        order = await Order.create({"total": 1})
        assert (await Order.find_or_fail(order.id)).total == 1

        with pytest.raises(ModelNotFoundError) as exc_info:
            await Order.find_or_fail(99)
        assert exc_info.value.ids == [99]
        assert exc_info.value.model == "Order"

    @pytest.mark.asyncio
    async def test_find_many_and_missing_keys(self):
        await Order.create({"total": 1})
        await Order.create({"total": 2})

        assert (await Order.find([1, 2])).model_keys() == [1, 2]
        with pytest.raises(ModelNotFoundError) as exc_info:
            await Order.find_or_fail([1, 5])
        assert exc_info.value.ids == [5]

    @pytest.mark.asyncio
    async def test_first_or_create_and_update_or_create(self, connection):
        first = await Order.first_or_create({"status": "open"}, {"total": 3})
        again = await Order.first_or_create({"status": "open"}, {"total": 9})
        assert first.id == again.id
        assert again.total == 3

        updated = await Order.update_or_create({"status": "open"}, {"total": 10})
        assert updated.id == first.id
        assert connection.rows("orders")[0]["total"] == 10

        fresh = await Order.first_or_new({"status": "closed"})
        assert not fresh.exists
        assert fresh.status == "closed"

    @pytest.mark.asyncio
    async def test_update_method(self):
        order = await Order.create({"total": 1})
        assert await order.update({"total": 2})
        assert (await order.fresh()).total == 2
        assert await Order({"total": 1}).update({"total": 2}) is False

    @pytest.mark.asyncio
    async def test_refresh_reloads_attributes(self, connection):
        order = await Order.create({"total": 1})
        await Order.query().where("id", order.id).update({"total": 50})

        await order.refresh()
        assert order.total == 50
        assert order.is_clean()

    @pytest.mark.asyncio
    async def test_refresh_of_deleted_row_fails(self, connection):
        comment = await Comment.create({"body": "x"})
        await Comment.query().delete()
        with pytest.raises(ModelNotFoundError):
            await comment.refresh()


class TestKeys:
    @pytest.mark.asyncio
    async def test_non_incrementing_key(self, connection):
        class Setting(Model):
            _primary_key = "key"
            _incrementing = False
            _timestamps = False
            _fillable = ["key", "value"]

        setting = await Setting.create({"key": "theme", "value": "dark"})
        assert setting.get_key() == "theme"
        assert connection.rows("settings") == [{"key": "theme", "value": "dark"}]

        setting.value = "light"
        await setting.save()
        assert (await Setting.find("theme")).value == "light"

    @pytest.mark.asyncio
    async def test_changing_the_key_updates_the_original_row(self, connection):
        comment = await Comment.create({"body": "x"})
        comment.set_key(10)
        await comment.save()
        assert connection.rows("comments")[0]["id"] == 10


class TestStorageErrors:
    @pytest.mark.asyncio
    async def test_failures_propagate_unchanged(self, caplog):
        class FailingConnection(MemoryConnection):
            async def insert_get_id(self, table, values, key_name="id"):
                raise QueryError("no such table: orders")

        caplog.set_level(logging.ERROR, logger="starorm")
        registry.set_connection(FailingConnection())

        with pytest.raises(QueryError):
            await Order.create({"total": 1})
        assert "UndefinedTable during insert on Order" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_row_on_update_logs_warning(self, connection, caplog):
        caplog.set_level(logging.WARNING, logger="starorm")
        order = await Order.create({"total": 1})
        await Order.query().force_delete()

        order.total = 2
        assert await order.save()
        assert "affected 0 rows" in caplog.text
