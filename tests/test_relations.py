"""
Tests for relationship resolution: has-one, has-many, belongs-to,
many-to-many pivot mutation and has-many-through.
"""

import pytest

from starorm import Collection, ConfigurationError, PivotChanges, RelationError, registry

from models import Comment, Country, Post, Profile, Tag, User


def pivot_pairs(connection):
    return {(row["post_id"], row["tag_id"]) for row in connection.rows("post_tag")}


@pytest.fixture
async def tags():
    return [await Tag.create({"name": name}) for name in ("python", "async", "orm")]


@pytest.fixture
async def post():
    return await Post.create({"title": "Relations", "published": True})


class TestHasOneAndHasMany:
    @pytest.mark.asyncio
    async def test_has_many_create_fills_foreign_key(self):
        user = await User.create({"name": "ada"})
        post = await user.posts().create({"title": "first"})

        assert post.user_id == user.id
        assert (await user.posts().get()).model_keys() == [post.id]

    @pytest.mark.asyncio
    async def test_relation_queries_chain_builder_methods_and_scopes(self):
        user = await User.create({"name": "ada"})
        await user.posts().create_many([
            {"title": "b", "published": True},
            {"title": "a", "published": True},
            {"title": "c", "published": False},
        ])
        await Post.create({"title": "other", "published": True})

        titles = (await user.posts().live().order_by("title").get()).pluck("title")
        assert titles == ["a", "b"]
        assert await user.posts().count() == 3
        assert await user.posts().where("title", "c").exists()

    @pytest.mark.asyncio
    async def test_soft_deleted_related_rows_are_excluded(self):
        user = await User.create({"name": "ada"})
        keep = await user.posts().create({"title": "keep"})
        gone = await user.posts().create({"title": "gone"})
        await gone.delete()

        assert (await user.posts().get()).model_keys() == [keep.id]
        assert (await user.posts().with_trashed().get()).model_keys() == [keep.id, gone.id]

    @pytest.mark.asyncio
    async def test_unsaved_owner_yields_empty_results(self):
        user = User({"name": "draft"})
        await Post.create({"title": "orphan"})

        assert await user.posts().get() == []
        assert await user.profile().first() is None
        with pytest.raises(RelationError):
            await user.posts().create({"title": "x"})

    @pytest.mark.asyncio
    async def test_has_one(self):
        user = await User.create({"name": "ada"})
        await Profile.create({"bio": "mathematician", "user_id": user.id})

        profile = await user.profile().first()
        assert profile.bio == "mathematician"
        assert await user.profile().get_results() is not None

    @pytest.mark.asyncio
    async def test_save_and_save_many(self):
        user = await User.create({"name": "ada"})
        saved = await user.posts().save(Post({"title": "one"}))
        assert saved.user_id == user.id

        await user.posts().save_many([Post({"title": "two"}), Post({"title": "three"})])
        assert await user.posts().count() == 3

    @pytest.mark.asyncio
    async def test_relation_mass_update(self):
        user = await User.create({"name": "ada"})
        await user.posts().create({"title": "a"})
        await Post.create({"title": "other"})

        assert await user.posts().update({"published": True}) == 1
        assert (await Post.query().live().get()).pluck("title") == ["a"]


class TestBelongsTo:
    @pytest.mark.asyncio
    async def test_reads_the_owner(self):
        user = await User.create({"name": "ada"})
        post = await user.posts().create({"title": "x"})

        assert (await post.author().first()).id == user.id

    @pytest.mark.asyncio
    async def test_associate_persists_only_on_save(self, connection):
        user = await User.create({"name": "ada"})
        post = await Post.create({"title": "x"})

        post.author().associate(user)
        assert post.user_id == user.id
        assert post.get_relation("author") is user
        assert connection.rows("posts")[0].get("user_id") is None, "associate() writes nothing"

        await post.save()
        assert connection.rows("posts")[0]["user_id"] == user.id

    @pytest.mark.asyncio
    async def test_dissociate(self):
        user = await User.create({"name": "ada"})
        post = await user.posts().create({"title": "x"})

        post.author().dissociate()
        assert post.user_id is None
        assert post.is_dirty("user_id")
        assert await post.author().first() is None

    @pytest.mark.asyncio
    async def test_default_relation_name_from_foreign_key(self):
        country = await Country.create({"name": "Wakanda"})
        user = await User.create({"name": "ada"})

        user.country().associate(country)
        assert user.get_relation("country") is country

    @pytest.mark.asyncio
    async def test_load_caches_relations(self):
        user = await User.create({"name": "ada"})
        post = await user.posts().create({"title": "x"})
        await post.comments().create({"body": "nice"})

        await post.load("author", "comments")
        assert post.relation_loaded("author")
        assert post.get_relation("author").id == user.id
        assert isinstance(post.get_relation("comments"), Collection)

        data = post.to_dict()
        assert data["author"]["name"] == "ada"
        assert data["comments"][0]["body"] == "nice"

    @pytest.mark.asyncio
    async def test_load_unknown_relation(self):
        post = await Post.create({"title": "x"})
        with pytest.raises(ConfigurationError):
            await post.load("nothing")

    @pytest.mark.asyncio
    async def test_refresh_reloads_loaded_relations(self):
        user = await User.create({"name": "ada"})
        post = await user.posts().create({"title": "x"})
        await post.load("comments")
        await Comment.create({"body": "late", "post_id": post.id})

        await post.refresh()
        assert len(post.get_relation("comments")) == 1


class TestBelongsToMany:
    @pytest.mark.asyncio
    async def test_sync_reconciles_pivot_rows(self, connection, post, tags):
        """sync([1, 2]) then sync([2, 3]) detaches 1, attaches 3 and leaves 2"""
        first = await post.tags().sync([1, 2])
        assert first.attached == [1, 2]
        assert first.detached == []
        assert pivot_pairs(connection) == {(post.id, 1), (post.id, 2)}

        second = await post.tags().sync([2, 3])
        assert second.attached == [3]
        assert second.detached == [1]
        pairs = pivot_pairs(connection)
        assert (post.id, 1) not in pairs
        assert (post.id, 2) in pairs
        assert (post.id, 3) in pairs
        assert len(connection.rows("post_tag")) == 2

    @pytest.mark.asyncio
    async def test_repeated_sync_issues_no_pivot_writes(self, connection, post, tags):
        await post.tags().sync([1, 2, 3])
        connection.clear_log()

        changes = await post.tags().sync([1, 2, 3])
        assert changes.to_dict() == {"attached": [], "detached": [], "updated": []}
        assert not changes
        for operation in ("insert", "update", "delete"):
            assert connection.queries(operation, "post_tag") == [], operation

    @pytest.mark.asyncio
    async def test_sync_runs_in_a_transaction(self, connection, post, tags):
        connection.clear_log()
        await post.tags().sync([1])
        assert [entry.operation for entry in connection.queries(table="")] == ["begin", "commit"]

        registry.config.atomic_pivot_sync = False
        connection.clear_log()
        await post.tags().sync([2])
        assert connection.queries("begin") == []

    @pytest.mark.asyncio
    async def test_sync_without_detaching(self, connection, post, tags):
        await post.tags().attach(1)
        changes = await post.tags().sync_without_detaching([2])

        assert changes.attached == [2]
        assert pivot_pairs(connection) == {(post.id, 1), (post.id, 2)}

    @pytest.mark.asyncio
    async def test_sync_updates_pivot_attributes(self, connection, post, tags):
        await post.tags().attach([1, 2], {"weight": 1})
        changes = await post.tags().sync({1: {"weight": 5}, 2: {}})

        assert changes.updated == [1]
        weights = {row["tag_id"]: row["weight"] for row in connection.rows("post_tag")}
        assert weights == {1: 5, 2: 1}

    @pytest.mark.asyncio
    async def test_toggle(self, connection, post, tags):
        await post.tags().attach([1, 2])
        changes = await post.tags().toggle([2, 3])

        assert isinstance(changes, PivotChanges)
        assert changes.attached == [3]
        assert changes.detached == [2]
        assert pivot_pairs(connection) == {(post.id, 1), (post.id, 3)}

    @pytest.mark.asyncio
    async def test_attach_accepts_models_and_extra_attributes(self, connection, post, tags):
        await post.tags().attach(tags[:2], {"weight": 3})

        rows = connection.rows("post_tag")
        assert [row["tag_id"] for row in rows] == [1, 2]
        assert all(row["weight"] == 3 for row in rows)

    @pytest.mark.asyncio
    async def test_attach_is_not_idempotent(self, connection, post, tags):
        await post.tags().attach(1)
        await post.tags().attach(1)
        assert len(connection.rows("post_tag")) == 2

    @pytest.mark.asyncio
    async def test_detach(self, connection, post, tags):
        await post.tags().attach([1, 2, 3])

        assert await post.tags().detach([]) == 0
        assert await post.tags().detach(9) == 0, "Detaching an absent id is a no-op"
        assert await post.tags().detach(1) == 1
        assert await post.tags().detach() == 2
        assert connection.rows("post_tag") == []

    @pytest.mark.asyncio
    async def test_reads_attach_pivot_rows(self, post, tags):
        await post.tags().attach({1: {"weight": 2}, 3: {"weight": 7}})

        attached = await post.tags().with_pivot("weight").get()
        assert sorted(attached.pluck("name")) == ["orm", "python"]
        weights = {tag.name: tag.pivot["weight"] for tag in attached}
        assert weights == {"python": 2, "orm": 7}
        assert attached[0].pivot["post_id"] == post.id

        assert await post.tags().count() == 2
        assert await post.tags().where("name", "orm").exists()

    @pytest.mark.asyncio
    async def test_inverse_side(self, post, tags):
        other = await Post.create({"title": "Second"})
        await post.tags().attach(1)
        await other.tags().attach(1)

        titles = (await tags[0].posts().get()).pluck("title")
        assert sorted(titles) == ["Relations", "Second"]

    @pytest.mark.asyncio
    async def test_pivot_mutation_needs_a_saved_parent(self, tags):
        with pytest.raises(RelationError):
            await Post({"title": "draft"}).tags().attach(1)

    @pytest.mark.asyncio
    async def test_pivot_mutation_leaves_models_clean(self, post, tags):
        await post.tags().sync([1, 2])
        assert post.is_clean()
        assert all(tag.is_clean() for tag in tags)


class TestHasManyThrough:
    @pytest.fixture
    async def world(self):
        here = await Country.create({"name": "here"})
        there = await Country.create({"name": "there"})
        ada = await User.create({"name": "ada", "country_id": here.id})
        bob = await User.create({"name": "bob", "country_id": here.id})
        eve = await User.create({"name": "eve", "country_id": there.id})
        await ada.posts().create({"title": "ada-1"})
        await ada.posts().create({"title": "ada-2"})
        await bob.posts().create({"title": "bob-1"})
        await eve.posts().create({"title": "eve-1"})
        return here, there

    @pytest.mark.asyncio
    async def test_resolves_through_intermediate_keys(self, world):
        here, there = world
        assert sorted((await here.posts().get()).pluck("title")) == ["ada-1", "ada-2", "bob-1"]
        assert (await there.posts().get()).pluck("title") == ["eve-1"]
        assert await here.posts().count() == 3

    @pytest.mark.asyncio
    async def test_large_key_sets_are_batched(self, connection, world):
        here, _ = world
        registry.config.through_chunk_size = 1
        connection.clear_log()

        posts = await here.posts().get()
        assert len(posts) == 3
        assert len(connection.queries("select", "posts")) == 2, "One read per batch of intermediate keys"

    @pytest.mark.asyncio
    async def test_constraints_chain(self, world):
        here, _ = world
        post = await here.posts().where("title", "bob-1").first()
        assert post.title == "bob-1"

    @pytest.mark.asyncio
    async def test_owner_without_intermediate_rows(self):
        empty = await Country.create({"name": "empty"})
        assert await empty.posts().get() == []
        assert await empty.posts().count() == 0
        assert await Country({"name": "unsaved"}).posts().first() is None
