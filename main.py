import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from auth import AccountService, current_user, require_admin, session_cookie
from catalog import CatalogService
from config import Settings, load_settings
from contact import ContactService
from database import Storage, connect
from errors import register_error_handlers
from logging_config import REQUEST_ID_HEADER, configure_logging, new_request_id, request_id_var
from orders import OrderPipeline
from payments import PaymentGateway, build_gateway
from schemas import (
    ContactCreate, ContactOut, DeliveryUpdate, LoginRequest, MessageOut, OrderCreate,
    OrderCreated, OrderDetail, OrderOut, PaymentVerification, ProductCreate, ProductOut,
    ProductUpdate, RegisterRequest, StatusOut, UserOut,
)
from sessions import SESSION_COOKIE, MemorySessionStore, SessionStore

logger = logging.getLogger("storefront")

api = APIRouter(prefix="/api")


# Utilities

def services(request: Request):
    return request.app.state


def set_session_cookie(request: Request, response: Response, value: str) -> None:
    settings: Settings = request.app.state.settings
    response.set_cookie(
        SESSION_COOKIE,
        value,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.production,
    )


async def prune_sessions_periodically(accounts: AccountService, interval: int):
    while True:
        await asyncio.sleep(interval)
        removed = await asyncio.to_thread(accounts.prune_sessions)
        if removed:
            logger.info("Pruned %d expired sessions", removed)


# Auth endpoints

@api.post("/register", response_model=UserOut, status_code=201)
def register(payload: RegisterRequest, request: Request, response: Response,
             cookie: Optional[str] = Depends(session_cookie)):
    user, session_value = request.app.state.accounts.register(payload, previous=cookie)
    set_session_cookie(request, response, session_value)
    return user


@api.post("/login", response_model=UserOut)
def login(payload: LoginRequest, request: Request, response: Response,
          cookie: Optional[str] = Depends(session_cookie)):
    user, session_value = request.app.state.accounts.authenticate(
        payload.username, payload.password, previous=cookie
    )
    set_session_cookie(request, response, session_value)
    return user


@api.post("/logout", response_model=MessageOut)
def logout(request: Request, response: Response, cookie: Optional[str] = Depends(session_cookie)):
    request.app.state.accounts.logout(cookie)
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Logged out"}


@api.get("/user", response_model=UserOut)
def me(user: dict = Depends(current_user)):
    return user


# Products

@api.get("/products", response_model=List[ProductOut])
def list_products(state=Depends(services)):
    return state.catalog.list()


@api.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: int, state=Depends(services)):
    return state.catalog.get(product_id)


@api.post("/products", response_model=ProductOut, status_code=201)
def create_product(payload: ProductCreate, admin: dict = Depends(require_admin),
                   state=Depends(services)):
    return state.catalog.create(payload, admin)


@api.put("/products/{product_id}", response_model=ProductOut)
def update_product(product_id: int, payload: ProductUpdate, admin: dict = Depends(require_admin),
                   state=Depends(services)):
    return state.catalog.update(product_id, payload, admin)


@api.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: int, admin: dict = Depends(require_admin), state=Depends(services)):
    state.catalog.delete(product_id, admin)
    return Response(status_code=204)


# Orders

@api.post("/orders", response_model=OrderCreated, status_code=201)
def create_order(payload: OrderCreate, user: dict = Depends(current_user), state=Depends(services)):
    return state.orders.create_order(user, payload)


@api.post("/orders/verify", response_model=StatusOut)
def verify_payment(payload: PaymentVerification, state=Depends(services)):
    return state.orders.verify_payment(payload)


@api.get("/orders", response_model=List[OrderOut])
def list_orders(user: dict = Depends(current_user), state=Depends(services)):
    return state.orders.list_orders_for_user(user)


@api.get("/orders/{order_id}", response_model=OrderDetail)
def get_order(order_id: int, user: dict = Depends(current_user), state=Depends(services)):
    return state.orders.get_order(user, order_id)


@api.patch("/orders/{order_id}/delivery", response_model=OrderOut)
def update_delivery(order_id: int, payload: DeliveryUpdate, admin: dict = Depends(require_admin),
                    state=Depends(services)):
    return state.orders.update_delivery(admin, order_id, payload)


# Contact

@api.post("/contact", response_model=ContactOut, status_code=201)
def submit_contact(payload: ContactCreate, state=Depends(services)):
    return state.contact.submit(payload)


# Admin review

@api.get("/admin/orders", response_model=List[OrderOut])
def admin_orders(admin: dict = Depends(require_admin), state=Depends(services)):
    return state.orders.list_all_orders(admin)


@api.get("/admin/contact", response_model=List[ContactOut])
def admin_contact(admin: dict = Depends(require_admin), state=Depends(services)):
    return state.contact.list_messages(admin)


# App factory

def create_app(settings: Optional[Settings] = None, db=None,
               gateway: Optional[PaymentGateway] = None,
               sessions: Optional[SessionStore] = None,
               clock=None, hash_rounds: Optional[int] = None) -> FastAPI:
    settings = settings or load_settings()
    storage = Storage(db if db is not None else connect(settings.database_url, settings.database_name))
    account_kwargs = {}
    if clock is not None:
        account_kwargs["clock"] = clock
    if hash_rounds is not None:
        account_kwargs["hash_rounds"] = hash_rounds
    accounts = AccountService(
        storage,
        sessions or MemorySessionStore(),
        settings.session_secret,
        ttl=timedelta(hours=settings.session_ttl_hours),
        **account_kwargs,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        storage.ensure_indexes()
        if settings.seed_products:
            app.state.catalog.seed()
        accounts.ensure_admin(settings)
        pruner = asyncio.create_task(
            prune_sessions_periodically(accounts, settings.session_prune_interval)
        )
        try:
            yield
        finally:
            pruner.cancel()

    app = FastAPI(title="Cattle Feed Store API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        if request.url.path.startswith("/api"):
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            logger.info(
                "%s %s %s %dms", request.method, request.url.path, response.status_code, elapsed_ms,
                extra={"request_id": request_id,
                       "extra": {"status": response.status_code, "duration_ms": elapsed_ms}},
            )
        return response

    register_error_handlers(app)

    app.state.settings = settings
    app.state.storage = storage
    app.state.accounts = accounts
    app.state.catalog = CatalogService(storage)
    app.state.orders = OrderPipeline(storage, gateway or build_gateway(settings), currency=settings.currency)
    app.state.contact = ContactService(storage)

    @app.get("/")
    def root():
        return {"message": "Cattle Feed Store API running"}

    @app.get("/test")
    def test_database():
        """Store health: whether MongoDB answers, and how many records each collection holds."""
        resp = {
            "backend": "running",
            "database": storage.db.name,
            "connection_status": "Not Connected",
            "collections": {},
        }
        try:
            resp["collections"] = storage.collection_counts()
            resp["connection_status"] = "Connected"
        except PyMongoError as e:
            logger.error("Database check failed: %s", e)
            resp["connection_status"] = "Error"
        return resp

    app.include_router(api)
    return app


app = create_app()


def serve():
    import uvicorn

    settings = app.state.settings
    configure_logging(settings.log_dir, settings.log_level)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    serve()
