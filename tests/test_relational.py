"""
tests/test_relational.py
Tests for generated relational models (dalgen.relational).

Every generated data access object runs against a fresh in-memory SQLite
engine; the ``statements`` fixture records the SQL it issues.

Tests cover:
- Naming helpers (tables, foreign keys, join tables)
- Plain DAOs: one / list / add / update / delete
- Belongs-to scoping (list_by_<parent>, one_by_<parent>, filters)
- Many-to-many join tables (add_<rel>, delete_<rel>, list_<rels>)
- Composite primary keys and role-capable records
- Dynamic table names
- Schema creation (create_tables, create_all)
- Read-through caching of DAO reads and background cache writes
- Record-to-media conversion
"""

from __future__ import annotations

from typing import Any, List, Tuple

import pytest
import sqlalchemy as sa

from dalgen.models import APIDefinition, ManyToMany, UserType
from dalgen.relational import (
    foreign_key_column,
    join_columns,
    join_table_name,
    record_attributes,
    render_models_init,
    resolve_table_name,
)
from dalgen.runtime import Model, RecordNotFoundError


# ===========================================================================
# Helpers
# ===========================================================================


def _ut(raw: Any) -> UserType:
    return UserType.model_validate(raw)


def _object(**fields: Any) -> dict:
    return {"type": {"kind": "object", "fields": fields}}


def _selects(statements: List[Tuple[str, Any]]) -> List[str]:
    return [sql for sql, _ in statements if sql.lstrip().upper().startswith("SELECT")]


@pytest.fixture()
def widgets(blog, engine):
    mod = blog.module("models.widget")
    mod.create_tables(engine)
    return mod, mod.WidgetDB(engine)


@pytest.fixture()
def comments(blog, engine):
    mod = blog.module("models.comment")
    mod.create_tables(engine)
    return mod, mod.CommentDB(engine)


@pytest.fixture()
def tags(blog, engine):
    mod = blog.module("models.tag")
    mod.create_tables(engine)
    dao = mod.TagDB(engine)
    dao.add(mod.Tag(id=9, name="python"))
    dao.add(mod.Tag(id=10, name="sql"))
    return mod, dao


@pytest.fixture()
def posts(blog, engine, tags):
    mod = blog.module("models.post")
    mod.create_tables(engine)
    dao = mod.PostDB(engine)
    yield mod, dao
    dao.cache.close()


@pytest.fixture()
def memberships(blog, engine):
    mod = blog.module("models.membership")
    mod.create_tables(engine)
    return mod, mod.MembershipDB(engine)


@pytest.fixture()
def events(blog, engine, tags):
    mod = blog.module("models.event")
    mod.create_tables(engine, "events_2024")
    return mod, mod.EventDB(engine)


# ===========================================================================
# Naming helpers
# ===========================================================================


class TestNamingHelpers:
    """Table, column and join-table names derived from the design."""

    def test_table_names(self) -> None:
        assert resolve_table_name(_ut({"name": "BlogPost", "attribute": _object()})) == "blog_posts"
        assert resolve_table_name(_ut({"name": "Category", "attribute": _object()})) == "categories"
        fixed = _ut({"name": "Widget", "attribute": _object(), "options": {"table_name": "w"}})
        assert resolve_table_name(fixed) == "w"

    def test_foreign_key_column(self, api: APIDefinition) -> None:
        comment = api.get_type("Comment")
        assert foreign_key_column(comment.belongs_to[0]) == "post_id"
        implicit = _ut({"name": "Note", "attribute": _object(), "belongs_to": [{"parent": "BlogPost"}]})
        assert foreign_key_column(implicit.belongs_to[0]) == "blog_post_id"

    def test_join_tables(self) -> None:
        owner = _ut({"name": "Post", "attribute": _object()})
        rel = ManyToMany(relation="Tag")
        assert rel.related == "Tag"
        assert join_table_name(owner, rel) == "post_tags"
        assert join_columns(owner, rel) == ("post_id", "tag_id")
        assert join_table_name(owner, ManyToMany(relation="Tag", join_table="taggings")) == "taggings"

    def test_self_relation_columns(self) -> None:
        node = _ut({"name": "Node", "attribute": _object()})
        assert join_columns(node, ManyToMany(relation="Child", related="Node")) == ("node_id", "child_id")

    def test_record_attributes_leave_base_fields_to_model(self) -> None:
        ut = _ut({"name": "Doc", "attribute": _object(id="integer", title="string")})
        assert list(record_attributes(ut)) == ["title"]
        keyed = _ut({
            "name": "Pair",
            "attribute": _object(a="integer", b="integer"),
            "primary_keys": [{"name": "a"}, {"name": "b"}],
        })
        assert list(record_attributes(keyed)) == ["a", "b"]

    def test_models_init(self, api: APIDefinition) -> None:
        source = render_models_init(api, api.storage_types())
        assert "from .widget import Widget, WidgetDB, WidgetStorage" in source
        assert '"MembershipDB",' in source
        assert "def create_all(engine: Engine) -> None:" in source
        assert "    membership.create_tables(engine)" in source


# ===========================================================================
# Plain data access objects
# ===========================================================================


class TestWidgetDB:
    """A type with a fixed table name and the default integer key."""

    def test_one_reads_by_primary_key(self, widgets, statements) -> None:
        mod, dao = widgets
        dao.add(mod.Widget(id=7, name="clock", size=3))
        statements.clear()

        widget = dao.one(7)

        assert (widget.id, widget.name, widget.size) == (7, "clock", 3)
        selects = _selects(statements)
        assert len(selects) == 1
        assert "FROM widgets" in selects[0]
        assert "WHERE widgets.id = ?" in selects[0]
        assert statements[-1][1] == (7,)

    def test_no_cache_without_cached_option(self, widgets) -> None:
        _, dao = widgets
        assert not hasattr(dao, "cache")

    def test_add_assigns_key_and_timestamps(self, widgets) -> None:
        mod, dao = widgets
        first = dao.add(mod.Widget(name="a"))
        second = dao.add(mod.Widget(name="b"))
        assert (first.id, second.id) == (1, 2)
        assert first.created_at is not None
        assert first.created_at == first.updated_at
        assert isinstance(first, Model)

    def test_list(self, widgets) -> None:
        mod, dao = widgets
        assert dao.list() == []
        dao.add(mod.Widget(name="a"))
        dao.add(mod.Widget(name="b", size=2))
        assert sorted((w.name, w.size) for w in dao.list()) == [("a", None), ("b", 2)]

    def test_missing_record(self, widgets) -> None:
        _, dao = widgets
        with pytest.raises(RecordNotFoundError) as exc_info:
            dao.one(99)
        assert (exc_info.value.type_name, exc_info.value.key) == ("Widget", "99")

    def test_update_writes_only_non_blank_fields(self, widgets) -> None:
        mod, dao = widgets
        added = dao.add(mod.Widget(name="clock", size=3))
        dao.update(mod.Widget(id=added.id, name="timer"))
        stored = dao.one(added.id)
        assert (stored.name, stored.size) == ("timer", 3)
        assert stored.created_at == added.created_at
        assert stored.updated_at >= added.updated_at

    def test_update_missing_record(self, widgets) -> None:
        mod, dao = widgets
        with pytest.raises(RecordNotFoundError):
            dao.update(mod.Widget(id=5, name="ghost"))

    def test_delete(self, widgets, statements) -> None:
        mod, dao = widgets
        dao.add(mod.Widget(id=7, name="a"))
        statements.clear()

        dao.delete(7)

        deletes = [(sql, params) for sql, params in statements if sql.lstrip().upper().startswith("DELETE")]
        assert len(deletes) == 1
        sql, params = deletes[0]
        assert "DELETE FROM widgets" in sql
        assert "WHERE widgets.id = ?" in sql
        assert params == (7,)

    def test_delete_removes_the_row(self, widgets) -> None:
        mod, dao = widgets
        added = dao.add(mod.Widget(name="a"))
        dao.delete(added.id)
        with pytest.raises(RecordNotFoundError):
            dao.one(added.id)
        dao.delete(added.id)

    def test_record_helpers(self, widgets) -> None:
        mod, dao = widgets
        assert dao.db() is dao.engine
        assert mod.WIDGET_TABLE_NAME == "widgets"
        widget = mod.Widget(id=1, name="a")
        assert widget.table_name() == "widgets"
        assert widget.to_dict()["name"] == "a"
        assert not hasattr(widget, "to_media")

    def test_update_always_writes_timestamp(self, widgets, statements) -> None:
        mod, dao = widgets
        added = dao.add(mod.Widget(name="clock"))
        statements.clear()
        dao.update(mod.Widget(id=added.id))
        assert any(sql.lstrip().upper().startswith("UPDATE") for sql, _ in statements)

    def test_models_package_reexports(self, blog, widgets) -> None:
        mod, _ = widgets
        models = blog.module("models")
        assert models.WidgetDB is mod.WidgetDB
        assert hasattr(models.WidgetStorage, "one")


# ===========================================================================
# Belongs-to
# ===========================================================================


class TestBelongsTo:
    """Parent-scoped queries on a child type."""

    def _seed(self, comments) -> list:
        mod, dao = comments
        return [
            dao.add(mod.Comment(post_id=3, text="a")),
            dao.add(mod.Comment(post_id=3, text="b")),
            dao.add(mod.Comment(post_id=4, text="c")),
        ]

    def test_list_by_parent(self, comments) -> None:
        _, dao = comments
        self._seed(comments)
        assert sorted(c.text for c in dao.list_by_post(3)) == ["a", "b"]
        assert sorted(c.text for c in dao.list_by_post(4)) == ["c"]

    def test_non_positive_parent_is_unscoped(self, comments) -> None:
        _, dao = comments
        self._seed(comments)
        assert len(dao.list_by_post(0)) == 3
        assert len(dao.list_by_post(-1)) == 3

    def test_one_by_parent(self, comments) -> None:
        _, dao = comments
        a, _, _ = self._seed(comments)
        assert dao.one_by_post(3, a.id).text == "a"
        assert dao.one_by_post(0, a.id).text == "a"
        with pytest.raises(RecordNotFoundError):
            dao.one_by_post(4, a.id)

    def test_in_memory_filter(self, comments) -> None:
        mod, _ = comments
        items = [mod.Comment(post_id=1, text="x"), mod.Comment(post_id=2, text="y")]
        assert [c.text for c in mod.filter_comment_by_post(2, items)] == ["y"]
        assert mod.filter_comment_by_post(None, items) == items
        assert mod.filter_comment_by_post(0, items) == items

    def test_implicit_foreign_key(self, build_package, engine) -> None:
        api = APIDefinition.model_validate({
            "name": "library",
            "user_types": [
                {"name": "Shelf", "attribute": _object(label="string")},
                {"name": "Book", "attribute": _object(title="string"), "belongs_to": [{"parent": "Shelf"}]},
            ],
        })
        mod = build_package(api).module("models.book")
        mod.create_tables(engine)
        dao = mod.BookDB(engine)
        dao.add(mod.Book(title="Dune", shelf_id=2))
        dao.add(mod.Book(title="Emma"))
        assert [b.title for b in dao.list_by_shelf(2)] == ["Dune"]
        assert mod.Book().shelf_id is None


# ===========================================================================
# Many-to-many
# ===========================================================================


class TestManyToMany:
    """Associations stored in a join table."""

    def test_join_table(self, posts) -> None:
        mod, _ = posts
        table = mod.post_tags_table()
        assert table.name == "post_tags"
        assert [c.name for c in table.columns] == ["post_id", "tag_id"]

    def test_add_and_list(self, posts, tags) -> None:
        mod, dao = posts
        tag_mod, _ = tags
        post = dao.add(mod.Post(title="t"))
        other = dao.add(mod.Post(title="u"))
        dao.add_tag(post.id, 9)
        dao.add_tag(post.id, 10)
        listed = dao.list_tags(post.id)
        assert sorted(t.name for t in listed) == ["python", "sql"]
        assert all(isinstance(t, tag_mod.Tag) for t in listed)
        assert dao.list_tags(other.id) == []

    def test_delete_association(self, posts) -> None:
        mod, dao = posts
        post = dao.add(mod.Post(title="t"))
        dao.add_tag(post.id, 9)
        dao.add_tag(post.id, 10)
        dao.delete_tag(post.id, 9)
        assert [t.name for t in dao.list_tags(post.id)] == ["sql"]


# ===========================================================================
# Composite keys
# ===========================================================================


class TestCompositeKeys:
    """A role-capable type keyed by two columns."""

    def test_crud(self, memberships, statements) -> None:
        mod, dao = memberships
        dao.add(mod.Membership(account_id=1, group_id=2, role="admin"))
        dao.add(mod.Membership(account_id=1, group_id=3, role="member"))
        statements.clear()

        found = dao.one(1, 2)

        assert found.role == "admin"
        assert found.get_role() == "admin"
        assert "account_id = ? AND group_id = ?" in _selects(statements)[0]

        dao.update(mod.Membership(account_id=1, group_id=2, role="owner"))
        assert dao.one(1, 2).role == "owner"
        assert dao.one(1, 3).role == "member"

        dao.delete(1, 3)
        with pytest.raises(RecordNotFoundError) as exc_info:
            dao.one(1, 3)
        assert exc_info.value.key == "1,3"
        assert [m.group_id for m in dao.list()] == [2]

    def test_update_without_changes_writes_nothing(self, memberships, statements) -> None:
        mod, dao = memberships
        dao.add(mod.Membership(account_id=1, group_id=2, role="admin"))
        statements.clear()

        dao.update(mod.Membership(account_id=1, group_id=2))

        assert not any(sql.lstrip().upper().startswith("UPDATE") for sql, _ in statements)
        assert dao.one(1, 2).role == "admin"

    def test_generated_source(self, blog) -> None:
        membership = (blog.path / "models" / "membership.py").read_text(encoding="utf-8")
        widget = (blog.path / "models" / "widget.py").read_text(encoding="utf-8")
        assert "result = conn.execute" not in membership
        assert "result = conn.execute" in widget
        assert "if changes:" in membership
        assert "if changes:" not in widget

    def test_get_role_annotation(self, memberships) -> None:
        mod, _ = memberships
        assert mod.Membership.get_role.__annotations__["return"] == "Optional[str]"

    def test_record_does_not_embed_model(self, memberships) -> None:
        mod, _ = memberships
        assert not issubclass(mod.Membership, Model)
        assert mod.Membership(account_id=1, group_id=2).to_dict() == {
            "account_id": 1,
            "group_id": 2,
            "role": None,
        }


# ===========================================================================
# Dynamic table names
# ===========================================================================


class TestDynamicTables:
    """Types whose table name is supplied on every call."""

    def test_crud_on_named_table(self, events) -> None:
        mod, dao = events
        added = dao.add("events_2024", mod.Event(name="login", payload={"ip": "10.0.0.1"}))
        found = dao.one("events_2024", added.id)
        assert found.name == "login"
        assert found.payload == {"ip": "10.0.0.1"}
        dao.update("events_2024", mod.Event(id=added.id, name="logout"))
        assert dao.one("events_2024", added.id).name == "logout"
        dao.delete("events_2024", added.id)
        assert dao.list("events_2024") == []

    def test_tables_are_isolated(self, events, engine) -> None:
        mod, dao = events
        mod.create_tables(engine, "events_2025")
        dao.add("events_2024", mod.Event(name="a"))
        assert dao.list("events_2025") == []
        assert len(dao.list("events_2024")) == 1

    def test_default_table_name(self, events) -> None:
        mod, _ = events
        assert mod.event_table().name == "events"
        assert mod.Event().table_name() == "events"

    def test_join_table_follows_table_name(self, events) -> None:
        mod, dao = events
        assert mod.event_tags_table("events_2024").name == "events_2024_tags"
        added = dao.add("events_2024", mod.Event(name="tagged"))
        dao.add_tag("events_2024", added.id, 9)
        assert [t.name for t in dao.list_tags("events_2024", added.id)] == ["python"]
        dao.delete_tag("events_2024", added.id, 9)
        assert dao.list_tags("events_2024", added.id) == []

    def test_cache_is_scoped_to_table(self, build_package, engine) -> None:
        api = APIDefinition.model_validate({
            "name": "tenants",
            "user_types": [{
                "name": "Item",
                "attribute": _object(title="string"),
                "options": {"cached": True, "dynamic_table_name": True},
            }],
        })
        mod = build_package(api).module("models.item")
        mod.create_tables(engine, "tenant_a")
        mod.create_tables(engine, "tenant_b")
        dao = mod.ItemDB(engine)
        try:
            dao.add("tenant_a", mod.Item(id=7, title="from-a"))
            dao.add("tenant_b", mod.Item(id=7, title="from-b"))
            dao.cache.flush()

            assert dao.one("tenant_a", 7).title == "from-a"
            assert dao.one("tenant_b", 7).title == "from-b"

            dao.delete("tenant_a", 7)
            dao.cache.flush()
            assert "tenant_a,7" not in dao.cache
            assert dao.one("tenant_b", 7).title == "from-b"
            with pytest.raises(RecordNotFoundError):
                dao.one("tenant_a", 7)
        finally:
            dao.cache.close()


# ===========================================================================
# Schema creation
# ===========================================================================


class TestCreateTables:
    """Generated helpers create tables together with their join tables."""

    def test_create_all(self, blog, engine) -> None:
        models = blog.module("models")
        models.create_all(engine)
        names = set(sa.inspect(engine).get_table_names())
        assert {"widgets", "posts", "post_tags", "comments", "tags", "memberships", "events", "events_tags"} <= names

        posts = models.PostDB(engine)
        try:
            models.TagDB(engine).add(models.Tag(id=9, name="python"))
            post = posts.add(models.Post(title="t"))
            posts.add_tag(post.id, 9)
            assert [t.name for t in posts.list_tags(post.id)] == ["python"]
        finally:
            posts.cache.close()

    def test_module_creates_its_join_tables(self, blog, engine) -> None:
        blog.module("models.post").create_tables(engine)
        assert set(sa.inspect(engine).get_table_names()) == {"posts", "post_tags"}

    def test_dynamic_table_name(self, blog, engine) -> None:
        blog.module("models.event").create_tables(engine, "events_2030")
        assert set(sa.inspect(engine).get_table_names()) == {"events_2030", "events_2030_tags"}


# ===========================================================================
# Cached data access
# ===========================================================================


class TestCachedDAO:
    """Reads through a ReadThroughCache, writes refreshing it in the background."""

    def test_cache_settings(self, posts) -> None:
        _, dao = posts
        assert dao.cache.expiration == 300.0
        assert dao.cache.cleanup_interval == 30.0

    def test_add_populates_cache(self, posts, statements) -> None:
        mod, dao = posts
        post = dao.add(mod.Post(title="Hi", body="b"))
        dao.cache.flush()
        statements.clear()

        found = dao.one(post.id)

        assert found.title == "Hi"
        assert _selects(statements) == []

    def test_miss_reads_storage_then_caches(self, posts, statements) -> None:
        mod, dao = posts
        post = dao.add(mod.Post(title="Hi"))
        dao.cache.flush()
        dao.cache.delete(str(post.id))
        statements.clear()

        dao.one(post.id)
        dao.cache.flush()
        dao.one(post.id)

        assert len(_selects(statements)) == 1

    def test_cached_values_are_copies(self, posts) -> None:
        mod, dao = posts
        post = dao.add(mod.Post(title="Hi"))
        dao.cache.flush()
        dao.one(post.id).title = "mutated"
        assert dao.one(post.id).title == "Hi"

    def test_update_refreshes_cache_from_storage(self, posts) -> None:
        mod, dao = posts
        post = dao.add(mod.Post(title="Hi", body="b"))
        dao.cache.flush()
        dao.cache.set(str(post.id), mod.Post(id=post.id, title="stale"))

        dao.update(mod.Post(id=post.id, title="New"))
        dao.cache.flush()

        cached = dao.one(post.id)
        assert (cached.title, cached.body) == ("New", "b")

    def test_delete_evicts(self, posts) -> None:
        mod, dao = posts
        post = dao.add(mod.Post(title="Hi"))
        dao.cache.flush()
        dao.delete(post.id)
        dao.cache.flush()
        assert str(post.id) not in dao.cache
        with pytest.raises(RecordNotFoundError):
            dao.one(post.id)

    def test_sql_tag_is_kept_in_table_info(self, posts) -> None:
        mod, _ = posts
        assert mod.post_table().info == {"sql_tag": "content"}


# ===========================================================================
# Media conversion
# ===========================================================================


class TestToMedia:
    """Records whose media type references them convert to it."""

    def test_to_media(self, blog, posts) -> None:
        mod, _ = posts
        media = blog.module("media_types")
        post = mod.Post(id=4, title="t", body="long", published=True)
        assert post.to_media() == media.PostMedia(id=4, title="t", published=True)

    def test_to_media_names_unset_fields(self, posts) -> None:
        mod, _ = posts
        assert "Left at their defaults: author, rating, meta." in mod.Post.to_media.__doc__

    def test_no_media_option(self, minimal_api_dict, build_package) -> None:
        minimal_api_dict["user_types"][0]["options"] = {"no_media": True}
        minimal_api_dict["media_types"] = [{
            "name": "ItemMedia",
            "identifier": "application/vnd.item+json",
            "attribute": {"type": {"kind": "object", "type_name": "Item", "fields": {"title": "string"}}},
        }]
        package = build_package(APIDefinition.model_validate(minimal_api_dict))
        assert not hasattr(package.module("models.item").Item, "to_media")
