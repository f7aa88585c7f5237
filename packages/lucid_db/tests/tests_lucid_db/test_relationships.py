import pytest
from lucid_db.collection import Collection
from lucid_db.exceptions import RelationError, RelationNotLoadedError
from lucid_db.models import Model
from lucid_db.query import Query
from lucid_db.relations import BelongsTo, HasMany
from sqlalchemy import Column, Integer, String

from .models import Customer, Order, Profile, Role, User

pytestmark = pytest.mark.asyncio


async def seed_customers(db):
    ada = await Customer.objects.create(db, name="Ada")
    grace = await Customer.objects.create(db, name="Grace")
    for customer_id, total in ((1, 10.0), (1, 25.0), (2, 40.0)):
        await Order.objects.create(db, customer_id=customer_id, total=total)
    return ada, grace


async def seed_roles(db):
    for user_id, username in ((1, "ada"), (2, "grace")):
        await User.objects.create(db, id=user_id, username=username)
    for role_id, name in ((10, "admin"), (11, "editor")):
        await Role.objects.create(db, id=role_id, name=name)
    await Query(db, "user_role").insert_many(
        [
            {"user_id": 1, "role_id": 10, "granted_by": "root"},
            {"user_id": 1, "role_id": 11, "granted_by": "ada"},
            {"user_id": 2, "role_id": 10, "granted_by": "root"},
        ]
    )


class TestHasMany:
    """Tests for one-to-many relations."""

    async def test_customer_orders(self, db):
        """Should return exactly the orders pointing at the customer."""
        ada, _ = await seed_customers(db)
        orders = await ada.related(db, "orders")
        assert isinstance(orders, Collection)
        assert sorted(order.total for order in orders) == [10.0, 25.0]
        assert {order.customer_id for order in orders} == {1}

    async def test_result_is_memoized(self, db, queries):
        """Should query once and serve later reads from the instance."""
        ada, _ = await seed_customers(db)
        queries.reset()

        first = await ada.related(db, "orders")
        second = await ada.related(db, "orders")

        assert first is second
        assert ada.orders is first
        assert queries.count == 1

    async def test_unresolved_attribute_raises(self, db):
        """Should refuse to read a relation before it was resolved."""
        ada, _ = await seed_customers(db)
        assert ada.relation_loaded("orders") is False
        with pytest.raises(RelationNotLoadedError, match="'orders'"):
            ada.orders  # noqa: B018

    async def test_refresh_forgets_resolved_relations(self, db):
        """Should re-query after the owner is re-fetched."""
        ada, _ = await seed_customers(db)
        await ada.related(db, "orders")
        await Order.objects.create(db, customer_id=ada.id, total=5.0)

        assert len(ada.orders) == 2
        await ada.refresh(db)
        assert ada.relation_loaded("orders") is False
        assert len(await ada.related(db, "orders")) == 3

    async def test_relation_query_accepts_more_clauses(self, db):
        """Should expose the scoped query for further constraints."""
        ada, _ = await seed_customers(db)
        biggest = await ada.relation_query(db, "orders").order_by("total", "desc").first()
        assert biggest.total == 25.0
        assert ada.relation_loaded("orders") is False

    async def test_unsaved_owner_issues_no_query(self, db, queries):
        """Should resolve to an empty Collection when the owner has no key."""
        queries.reset()
        orders = await Customer(name="New").related(db, "orders")
        assert list(orders) == []
        assert queries.count == 0

    async def test_unsaved_owner_query_ignores_orphans(self, db):
        """Should not match rows whose foreign key is NULL for an owner without key."""
        await Order.objects.create(db, customer_id=None, total=1.0)
        query = Customer(name="New").relation_query(db, "orders")
        assert await query.count() == 0


class TestHasOne:
    """Tests for one-to-one relations."""

    async def test_profile(self, db):
        """Should return the single related row or None."""
        ada, grace = await seed_customers(db)
        await Profile.objects.create(db, customer_id=ada.id, bio="Analyst")

        assert (await ada.related(db, "profile")).bio == "Analyst"
        assert await grace.related(db, "profile") is None


class TestBelongsTo:
    """Tests for inverse relations."""

    async def test_order_customer(self, db):
        """Should follow the foreign key stored on the owner."""
        await seed_customers(db)
        order = await Order.objects.find(db, 3)
        customer = await order.related(db, "customer")
        assert customer.name == "Grace"

    async def test_null_foreign_key_skips_the_query(self, db, queries):
        """Should resolve to None without querying when the key is null."""
        order = await Order.objects.create(db, total=1.0)
        queries.reset()
        assert await order.related(db, "customer") is None
        assert queries.count == 0


class TestManyToMany:
    """Tests for relations through a junction table."""

    async def test_user_roles(self, db):
        """Should join through the junction table filtered by the owner."""
        await seed_roles(db)
        user = await User.objects.find(db, 1)
        roles = await user.related(db, "roles")
        assert sorted(role.id for role in roles) == [10, 11]

    async def test_inverse_pivot(self, db):
        """Should resolve the other side of the same junction table."""
        await seed_roles(db)
        role = await Role.objects.find(db, 10)
        users = await role.related(db, "users")
        assert sorted(user.id for user in users) == [1, 2]

    async def test_pivot_columns_are_attached(self, db):
        """Should expose selected junction columns as model.pivot."""
        await seed_roles(db)
        user = await User.objects.find(db, 1)
        roles = await user.related(db, "roles")
        granted = {role.name: role.pivot["granted_by"] for role in roles}
        assert granted == {"admin": "root", "editor": "ada"}
        assert "pivot__granted_by" not in roles[0].extra_keys()

    async def test_attach_detach_sync(self, db):
        """Should maintain junction rows for the owner."""
        await seed_roles(db)
        grace = await User.objects.find(db, 2)

        assert await grace.attach(db, "roles", [11], granted_by="ada") == 1
        assert sorted((await grace.relation_query(db, "roles").get()).model_keys()) == [
            10,
            11,
        ]

        assert await grace.detach(db, "roles", [10]) == 1
        result = await grace.sync(db, "roles", [10])
        assert result == {"attached": [10], "detached": [11]}

        await grace.refresh(db)
        assert (await grace.related(db, "roles")).model_keys() == [10]

    async def test_detach_everything(self, db):
        """Should remove every junction row of the owner."""
        await seed_roles(db)
        ada = await User.objects.find(db, 1)
        assert await ada.detach(db, "roles") == 2
        assert await Query(db, "user_role").count() == 1

    async def test_attach_requires_pivot_relation(self, db):
        """Should refuse junction writes on other relation kinds."""
        ada, _ = await seed_customers(db)
        with pytest.raises(RelationError, match="not a many-to-many"):
            await ada.attach(db, "orders", [1])


class TestRelationErrors:
    """Tests for descriptor validation."""

    async def test_unknown_relation_name(self, db):
        """Should name the model and relation in the error."""
        ada, _ = await seed_customers(db)
        with pytest.raises(RelationError, match="Customer has no relation named 'invoices'"):
            await ada.related(db, "invoices")

    async def test_missing_foreign_key_column(self, db):
        """Should reject a descriptor whose key column does not exist."""

        class Wallet(Model):
            __tablename__ = "wallets"
            owner_id = Column(Integer)
            orders = HasMany(Order, foreign_key="wallet_id")

        wallet = Wallet.hydrate({"id": 1, "owner_id": 1})
        with pytest.raises(RelationError, match="column 'wallet_id' does not exist"):
            await wallet.related(db, "orders")

    async def test_unknown_related_model(self, db):
        """Should reject a string reference to a model that was never defined."""

        class Coupon(Model):
            __tablename__ = "coupons"
            code = Column(String(20))
            order_id = Column(Integer)
            order = BelongsTo("Invoice", foreign_key="order_id")

        coupon = Coupon.hydrate({"id": 1, "code": "X", "order_id": 1})
        with pytest.raises(RelationError, match="Unknown model 'Invoice'"):
            await coupon.related(db, "order")
