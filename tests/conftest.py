"""Pytest fixtures for the shop service tests."""

import pytest

from lineshop import products, shops, store
from lineshop.errors import Unauthorized
from lineshop.identity import LineIdTokenPayload
from lineshop.models import ShopStatus
from lineshop.notifications import Notifier
from lineshop.products import ProductInput


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite database with the schema applied."""
    engine = store.create_engine(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    await store.create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return store.create_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


async def seed_shop(session, owner="owner-1", *, price=500, inventory=3, open_shop=True):
    """Create a shop with one product, optionally opening the shop afterwards."""
    shop = await shops.get_or_create_shop(session, owner)
    product = await products.create_product(
        session,
        shop,
        ProductInput(name="クッキー", description="手作り", price=price, inventory=inventory),
    )
    if open_shop:
        shop = await shops.update_shop_status(session, owner, ShopStatus.OPEN)
    return shop, product


@pytest.fixture
async def open_shop(session):
    """Open shop S with product P (price 500, inventory 3)."""
    return await seed_shop(session)


class FakeVerifier:
    """Treats the bearer token itself as the LINE user id."""

    async def verify(self, id_token: str) -> LineIdTokenPayload:
        if id_token == "bad-token":
            raise Unauthorized("LINE verify API error: invalid token")
        return LineIdTokenPayload(sub=id_token, aud="test-channel", name=f"user {id_token}")


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__()
        self.calls: list[tuple] = []

    async def order_created(self, order, shop):
        self.calls.append(("created", order.id))

    async def order_accepted(self, order, shop):
        self.calls.append(("accepted", order.id))

    async def order_canceled(self, order, shop):
        self.calls.append(("canceled", order.id))

    async def contact_requested(self, order, shop):
        self.calls.append(("contact_requested", order.id))

    async def contact_relayed(self, order, shop, message):
        self.calls.append(("contact_relayed", order.id, message))


class FakeLine:
    def __init__(self):
        self.pushed: list[tuple] = []
        self.replies: list[tuple] = []

    async def push_message(self, to, messages):
        self.pushed.append((to, messages))

    async def reply_message(self, reply_token, messages):
        self.replies.append((reply_token, messages))

    async def reply_text(self, reply_token, text):
        self.replies.append((reply_token, [{"type": "text", "text": text}]))


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published: list[tuple] = []

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis is down")
        self.published.append((channel, message))
