"""
Tests for global and local query scopes, including the intrinsic
soft-delete scope and model type boot.
"""

import pytest

from starorm import Model, QueryError, Scope, registry
from starorm.query.interface import QueryFilter, QueryOperator

from models import Comment, Order, Post


async def seed_orders():
    kept = await Order.create({"total": 1, "status": "open"})
    trashed = await Order.create({"total": 2, "status": "open"})
    await trashed.delete()
    return kept, trashed


class TestSoftDeleteScope:
    @pytest.mark.asyncio
    async def test_default_queries_exclude_trashed_rows(self):
        kept, trashed = await seed_orders()

        assert (await Order.all()).model_keys() == [kept.id]
        assert await Order.query().count() == 1, "Aggregates respect the scope too"
        assert await Order.find(trashed.id) is None

    @pytest.mark.asyncio
    async def test_with_trashed_and_only_trashed(self):
        kept, trashed = await seed_orders()

        assert (await Order.with_trashed().get()).model_keys() == [kept.id, trashed.id]
        assert (await Order.only_trashed().get()).model_keys() == [trashed.id]
        assert (await Order.query().with_trashed().find(trashed.id)).trashed()

    @pytest.mark.asyncio
    async def test_without_trashed_reinstates_the_scope(self):
        await seed_orders()
        assert await Order.with_trashed().without_trashed().count() == 1

    def test_predicate_uses_qualified_column(self):
        query = Order.query().apply_scopes()
        assert QueryFilter("orders.deleted_at", QueryOperator.IS_NULL) in query.options.filters

    def test_scope_is_applied_to_a_clone(self):
        builder = Order.query()
        builder.apply_scopes()
        assert builder.query.options.filters == [], "The builder's own query is never modified"

    def test_trashed_helpers_require_soft_deletes(self):
        with pytest.raises(QueryError):
            Comment.query().only_trashed()
        with pytest.raises(QueryError):
            Comment.query().without_trashed()

    @pytest.mark.asyncio
    async def test_mass_delete_and_restore(self, connection):
        await Order.create({"total": 1, "status": "open"})
        await Order.create({"total": 2, "status": "closed"})

        assert await Order.where("status", "open").delete() == 1
        assert len(connection.rows("orders")) == 2, "Mass delete is soft"
        assert await Order.query().count() == 1

        assert await Order.only_trashed().restore() == 1
        assert await Order.query().count() == 2

    @pytest.mark.asyncio
    async def test_mass_update_sets_updated_at(self, connection):
        order = await Order.create({"total": 1})
        connection.clear_log()

        await Order.where("total", 1).update({"status": "done"})
        update = connection.queries("update", "orders")[0]
        assert set(update.values) == {"status", "updated_at"}
        assert (await Order.find(order.id)).status == "done"


class TestGlobalScopes:
    @pytest.mark.asyncio
    async def test_callable_global_scope(self):
        class Invoice(Model):
            _fillable = ["status"]

        Invoice.add_global_scope("paid", lambda query, model: query.where("status", "paid"))
        await Invoice.create({"status": "paid"})
        await Invoice.create({"status": "draft"})

        assert await Invoice.query().count() == 1
        assert await Invoice.query().without_global_scope("paid").count() == 2
        assert await Invoice.query().without_global_scopes().count() == 2
        assert Invoice.query().without_global_scope("paid").removed_scopes() == ["paid"]

    @pytest.mark.asyncio
    async def test_scope_class(self):
        class ActiveScope(Scope):
            name = "active"

            def apply(self, query, model):
                query.where(model.qualify_column("active"), True)

        class Member(Model):
            _fillable = ["active"]
            _casts = {"active": "boolean"}

        Member.add_global_scope(ActiveScope())
        await Member.create({"active": True})
        await Member.create({"active": False})

        assert await Member.query().count() == 1
        assert await Member.query().without_global_scope(ActiveScope).count() == 2

    def test_global_scopes_do_not_leak_to_other_types(self):
        class Base(Model):
            _abstract = True

        class Left(Base):
            pass

        class Right(Base):
            pass

        Left.add_global_scope("only_left", lambda query, model: query)
        assert "only_left" in Left.get_global_scopes()
        assert "only_left" not in Right.get_global_scopes()

    @pytest.mark.asyncio
    async def test_boot_registers_scopes_once(self):
        calls = []

        class Ticket(Model):
            _fillable = ["open"]

            @classmethod
            def boot(cls):
                calls.append(cls)
                cls.add_global_scope("open", lambda query, model: query.where("open", True))

        assert registry.is_booted(Ticket), "Types defined after boot_all() boot on registration"
        registry.boot_all()
        assert calls == [Ticket]

        await Ticket.create({"open": True})
        await Ticket.create({"open": False})
        assert await Ticket.query().count() == 1


class TestLocalScopes:
    @pytest.mark.asyncio
    async def test_local_scopes_chain(self):
        await Post.create({"title": "a", "published": True})
        await Post.create({"title": "b", "published": True})
        await Post.create({"title": "a", "published": False})

        posts = await Post.query().live().titled("a").get()
        assert posts.pluck("title") == ["a"]
        assert posts[0].published is True

    def test_unknown_local_scope(self):
        with pytest.raises(AttributeError):
            Post.query().drafts()
