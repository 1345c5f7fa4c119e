"""
Shop Service — FastAPI エントリーポイント

DB エンジン・Redis・httpx クライアントは lifespan で生成して Services にまとめ、
app.state 経由で各エンドポイントへ渡す。モジュールのグローバルには持たない。

  出店者向け (Authorization: Bearer <LINE ID トークン>)
    /api/session, /api/shop, /api/products, /api/orders
  購入者向け
    /api/public/shops/{shopId}, /api/public/orders
  LINE
    /api/line-webhook
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import admission, inventory, orders, products, shops, store, webhook
from .config import Settings, configure_logging
from .errors import ShopError, ShopNotFound
from .identity import LineIdTokenVerifier, extract_bearer_token
from .line import LineMessagingClient, verify_signature
from .models import OrderStatus
from .notifications import Notifier

logger = logging.getLogger(__name__)


class Services:
    """リクエストをまたいで共有する外部サービスのハンドル"""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        verifier: LineIdTokenVerifier,
        notifier: Notifier,
        line: LineMessagingClient | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.verifier = verifier
        self.notifier = notifier
        self.line = line


# ── Request Models ───────────────────────────────


class SessionRequest(BaseModel):
    idToken: str


class UpdateShopRequest(BaseModel):
    name: str | None = None
    purchaseMessage: str | None = None


class UpdateShopStatusRequest(BaseModel):
    status: str


class ProductRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    price: int | None = None
    inventory: int | None = None
    imageUrl: str | None = None
    questionEnabled: bool | None = None
    questionText: str | None = None

    def to_input(self) -> products.ProductInput:
        return products.ProductInput(
            name=self.name,
            description=self.description,
            price=self.price,
            inventory=self.inventory,
            image_url=self.imageUrl,
            question_enabled=self.questionEnabled,
            question_text=self.questionText,
        )


class InventoryAdjustRequest(BaseModel):
    delta: int


class OrderActionRequest(BaseModel):
    action: str


class OrderMetaRequest(BaseModel):
    memo: str | None = None
    closed: bool | None = None


class PlaceOrderRequest(BaseModel):
    shopId: str
    productId: str
    # 整数でない値も受け取り、admission で InvalidQuantity として弾く
    quantity: Any = 1
    buyerIdToken: str
    questionResponse: str | None = None


# ── Dependencies ─────────────────────────────────


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_session(services: Services = Depends(get_services)) -> AsyncIterator[AsyncSession]:
    async with services.session_factory() as session:
        yield session


async def get_owner_user_id(
    authorization: str | None = Header(default=None),
    services: Services = Depends(get_services),
) -> str:
    token = extract_bearer_token(authorization)
    payload = await services.verifier.verify(token)
    return payload.sub


# ── App ──────────────────────────────────────────


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """
    アプリケーションを生成する。

    services を渡した場合は lifespan で外部接続を作らない（テスト用）。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            app.state.services = services
            yield
            return

        config = settings or Settings.from_env()
        configure_logging(config.log_level)
        engine = store.create_engine(config.database_url)
        await store.create_schema(engine)
        redis = aioredis.from_url(config.redis_url, decode_responses=True)
        http = httpx.AsyncClient(timeout=10.0)
        line = LineMessagingClient(http, config.line_channel_access_token)
        app.state.services = Services(
            settings=config,
            session_factory=store.create_session_factory(engine),
            verifier=LineIdTokenVerifier(http, config.line_login_channel_id),
            notifier=Notifier(redis, line),
            line=line,
        )
        logger.info("Shop service started")
        yield
        await http.aclose()
        await redis.aclose()
        await engine.dispose()

    app = FastAPI(title="LINE Shop Service", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"kind": exc.kind, "message": exc.message},
        )

    _register_owner_routes(app)
    _register_public_routes(app)
    _register_webhook(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "shop-service"}

    return app


def _register_owner_routes(app: FastAPI) -> None:
    # ── セッション・ショップ ─────────────────────

    @app.post("/api/session")
    async def create_session(
        req: SessionRequest,
        services: Services = Depends(get_services),
        session: AsyncSession = Depends(get_session),
    ):
        """ID トークンを検証し、出店者のショップを用意する。"""
        payload = await services.verifier.verify(req.idToken)
        shop = await shops.get_or_create_shop(session, payload.sub)
        return {
            "userId": payload.sub,
            "displayName": payload.name,
            "pictureUrl": payload.picture,
            "email": payload.email,
            "shop": shop.to_public(),
        }

    @app.get("/api/shop")
    async def get_shop(
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_or_create_shop(session, owner)
        return {"shop": shop.to_public()}

    @app.put("/api/shop")
    async def put_shop(
        req: UpdateShopRequest,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.update_shop(session, owner, req.name, req.purchaseMessage)
        return {"shop": shop.to_public()}

    @app.patch("/api/shop")
    async def patch_shop_status(
        req: UpdateShopStatusRequest,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.update_shop_status(session, owner, req.status)
        return {"shop": shop.to_public()}

    # ── 商品 ─────────────────────────────────────

    @app.get("/api/products")
    async def list_products(
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        items = await products.list_products(session, shop.shop_id)
        return {"items": [p.to_public() for p in items]}

    @app.post("/api/products", status_code=201)
    async def create_product(
        req: ProductRequest,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        product = await products.create_product(session, shop, req.to_input())
        return {"item": product.to_public()}

    @app.get("/api/products/{product_id}")
    async def get_product(
        product_id: str,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        product = await products.get_product_for_shop(session, shop.shop_id, product_id)
        return {"item": product.to_public()}

    @app.put("/api/products/{product_id}")
    async def put_product(
        product_id: str,
        req: ProductRequest,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        product = await products.update_product(session, shop, product_id, req.to_input())
        return {"item": product.to_public()}

    @app.delete("/api/products/{product_id}", status_code=204)
    async def delete_product(
        product_id: str,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        await products.archive_product(session, shop, product_id)
        return Response(status_code=204)

    @app.post("/api/products/{product_id}/inventory")
    async def adjust_product_inventory(
        product_id: str,
        req: InventoryAdjustRequest,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        """在庫の相対調整。公開中のショップでも行える。"""
        shop = await shops.get_shop(session, owner)
        product = await inventory.restock_product(session, shop.shop_id, product_id, req.delta)
        return {"item": product.to_public()}

    # ── 注文 ─────────────────────────────────────

    @app.get("/api/orders")
    async def list_orders(
        status: OrderStatus | None = None,
        limit: int = 50,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        items = await orders.list_orders_for_shop(
            session, shop.shop_id, status=status, limit=max(1, min(limit, 100))
        )
        return {"orders": [o.to_public() for o in items]}

    @app.get("/api/orders/{order_id}")
    async def get_order(
        order_id: str,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        order = await orders.get_order_for_shop(session, shop.shop_id, order_id)
        return {"order": order.to_public()}

    @app.post("/api/orders/{order_id}")
    async def post_order_action(
        order_id: str,
        req: OrderActionRequest,
        owner: str = Depends(get_owner_user_id),
        services: Services = Depends(get_services),
        session: AsyncSession = Depends(get_session),
    ):
        """注文の確定 (accept) またはキャンセル (cancel)"""
        shop = await shops.get_shop(session, owner)
        order = await orders.update_order_status(session, shop.shop_id, order_id, req.action)
        if order.status == OrderStatus.ACCEPTED:
            await services.notifier.order_accepted(order, shop)
        else:
            await services.notifier.order_canceled(order, shop)
        return {"order": order.to_public()}

    @app.patch("/api/orders/{order_id}/meta")
    async def patch_order_meta(
        order_id: str,
        req: OrderMetaRequest,
        owner: str = Depends(get_owner_user_id),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        order = await orders.update_order_meta(
            session, shop.shop_id, order_id, memo=req.memo, closed=req.closed
        )
        return {"order": order.to_public()}

    @app.post("/api/orders/{order_id}/contact")
    async def post_order_contact(
        order_id: str,
        owner: str = Depends(get_owner_user_id),
        services: Services = Depends(get_services),
        session: AsyncSession = Depends(get_session),
    ):
        shop = await shops.get_shop(session, owner)
        order = await orders.mark_contact_pending(session, owner, shop.shop_id, order_id)
        await services.notifier.contact_requested(order, shop)
        return {"order": order.to_public()}


def _register_public_routes(app: FastAPI) -> None:
    async def _open_shop(session: AsyncSession, shop_id: str):
        shop = await shops.get_shop_by_public_id(session, shop_id)
        if shop is None:
            raise ShopNotFound()
        return shop

    @app.get("/api/public/shops/{shop_id}")
    async def get_public_shop(shop_id: str, session: AsyncSession = Depends(get_session)):
        shop = await _open_shop(session, shop_id)
        return {
            "shop": {
                "shopId": shop.shop_id,
                "name": shop.name,
                "status": shop.status.value,
            }
        }

    @app.get("/api/public/shops/{shop_id}/products")
    async def get_public_products(shop_id: str, session: AsyncSession = Depends(get_session)):
        shop = await _open_shop(session, shop_id)
        if not shop.is_open:
            return {"items": []}
        items = await products.list_products(session, shop.shop_id)
        return {"items": [p.to_public() for p in items]}

    @app.post("/api/public/orders", status_code=201)
    async def place_order(
        req: PlaceOrderRequest,
        services: Services = Depends(get_services),
        session: AsyncSession = Depends(get_session),
    ):
        """購入者の注文を pending として作成し、出店者へ通知する。"""
        buyer = await services.verifier.verify(req.buyerIdToken)
        shop = await _open_shop(session, req.shopId)
        product = await products.get_product(session, req.productId)
        order = await admission.create_pending_order(
            session,
            shop,
            product,
            req.quantity,
            buyer.sub,
            req.questionResponse,
            tz=services.settings.daily_limit_tzinfo,
            daily_limit=services.settings.daily_order_limit,
        )
        await services.notifier.order_created(order, shop)
        return {"order": order.to_public()}


def _register_webhook(app: FastAPI) -> None:
    @app.post("/api/line-webhook")
    async def line_webhook(
        request: Request,
        x_line_signature: str | None = Header(default=None),
        services: Services = Depends(get_services),
        session: AsyncSession = Depends(get_session),
    ):
        body = await request.body()
        if not verify_signature(services.settings.line_channel_secret, body, x_line_signature):
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid body") from None

        await webhook.handle_events(
            session,
            services.notifier,
            services.line,
            payload.get("events", []),
            tz=services.settings.daily_limit_tzinfo,
            daily_limit=services.settings.daily_order_limit,
        )
        return {"status": "ok"}


def run() -> None:
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run("lineshop.main:create_app", factory=True, host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
