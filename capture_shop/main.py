from __future__ import annotations
import logging
import os
from typing import Any, List, Optional
from fastapi import Body, Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, ValidationError as SchemaError

from .auth import AuthService, SessionRegistry
from .booking import ALL_TEAMS, BookingFlow, ServiceCatalog
from .cart import Cart, CartRegistry
from .checkout import CheckoutService
from .config import configure_logging, settings
from .database import CollectionGateway, get_db, get_gateway
from .editor import EditController
from .errors import (
    AlreadyExists,
    DeleteFailure,
    DuplicateKey,
    InvalidCredentials,
    NotFound,
    NotificationFailure,
    RemoteUnavailable,
    ShopError,
    UploadFailure,
    ValidationError,
)
from .notify import EmailJSNotifier, Notifier
from .schemas import BillingDetails, Credentials, Package, Product
from .storage import FileBlob, GridFSObjectStore

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Capture Shop API")

# Allow all origins for dev preview
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_CODES: dict[type[ShopError], int] = {
    ValidationError: 422,
    NotFound: 404,
    DuplicateKey: 409,
    RemoteUnavailable: 503,
    UploadFailure: 502,
    DeleteFailure: 502,
    NotificationFailure: 502,
    AlreadyExists: 409,
    InvalidCredentials: 401,
}


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    status_code = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
    content: dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, ValidationError):
        content["detail"] = "Validation failed"
        content["errors"] = exc.errors
    if isinstance(exc, NotificationFailure) and exc.order_id:
        content["order_id"] = exc.order_id
    logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content=content)


# Dependencies

_carts = CartRegistry()
_sessions = SessionRegistry(settings.SESSION_TTL)


def get_carts() -> CartRegistry:
    return _carts


def get_sessions() -> SessionRegistry:
    return _sessions


async def get_store() -> GridFSObjectStore:
    return GridFSObjectStore(await get_db(), settings.PUBLIC_BASE_URL)


def get_notifier() -> Notifier:
    return EmailJSNotifier(
        service_id=settings.EMAILJS_SERVICE_ID,
        template_id=settings.EMAILJS_TEMPLATE_ID,
        user_id=settings.EMAILJS_USER_ID,
        access_token=settings.EMAILJS_ACCESS_TOKEN,
        api_url=settings.EMAILJS_API_URL,
    )


def get_checkout(
    gateway: CollectionGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> CheckoutService:
    return CheckoutService(gateway, notifier, settings)


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return authorization[7:].strip()


# Utils

async def read_uploads(files: List[UploadFile]) -> list[FileBlob]:
    return [
        FileBlob(filename=f.filename, content=await f.read(), content_type=f.content_type)
        for f in files
        if f.filename
    ]


def submitted(**fields: Any) -> dict[str, Any]:
    # Fields left out of the form keep their pre-filled value
    return {k: v for k, v in fields.items() if v is not None}


def cart_to_client(cart: Cart) -> dict[str, Any]:
    return {
        "items": [item.model_dump() for item in cart.items],
        "total": cart.calculate_total(),
        "count": cart.item_count(),
    }


@app.get("/")
async def root():
    return {"message": "Capture Shop Backend Running"}

@app.get("/test")
async def test():
    try:
        db = await get_db()
        colls = await db.list_collection_names()
        return {
            "backend": "✅ Running",
            "database": "✅ Available",
            "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
            "database_name": db.name,
            "connection_status": "Connected",
            "collections": colls,
        }
    except Exception as e:
        return {"backend": "✅ Running", "database": "❌ Not Available", "error": str(e)}

SEED_TEAMS: list[dict] = [{"name": "Team A"}, {"name": "Team B"}]

SEED_PACKAGES: list[dict] = [
    {"title": "Gold Package", "description": "Full-day coverage with edited album", "price": 500.0, "team": "Team A", "duration": 8},
    {"title": "Silver Package", "description": "Half-day coverage", "price": 300.0, "team": "Team A", "duration": 4},
    {"title": "Portrait Session", "description": "Studio portraits for up to four people", "price": 120.0, "team": "Team B", "duration": 2},
]

@app.post("/seed")
async def seed(gateway: CollectionGateway = Depends(get_gateway)):
    # Insert only if the collections are empty
    if await gateway.list("teams", limit=1):
        return {"seeded": False, "message": "Teams already exist"}
    for t in SEED_TEAMS:
        await gateway.create("teams", t)
    for p in SEED_PACKAGES:
        await gateway.create("packages", Package(**p).model_dump())
    return {"seeded": True, "teams": len(SEED_TEAMS), "packages": len(SEED_PACKAGES)}


# Catalog & booking

@app.get("/teams")
async def list_teams(gateway: CollectionGateway = Depends(get_gateway)):
    return await gateway.list("teams")

@app.get("/packages")
async def list_packages(gateway: CollectionGateway = Depends(get_gateway)):
    return await gateway.list("packages")

@app.get("/booking/services")
async def booking_services(team: str = Query(ALL_TEAMS), gateway: CollectionGateway = Depends(get_gateway)):
    catalog = ServiceCatalog(gateway)
    await catalog.load()
    return {"teams": catalog.team_filters(), "packages": catalog.filter_packages(team)}

class BookingSelection(BaseModel):
    package_id: str
    form_data: dict[str, Any] = Field(default_factory=dict)
    step: int = 0

@app.post("/booking/select")
async def booking_select(payload: BookingSelection, gateway: CollectionGateway = Depends(get_gateway)):
    package = await gateway.get("packages", payload.package_id)
    flow = BookingFlow(payload.form_data, payload.step)
    flow.select_package(package)
    return {"step": flow.step_name, "form_data": flow.form_data}


# Admin: packages

async def package_editor(gateway: CollectionGateway, store: GridFSObjectStore) -> EditController:
    teams = await gateway.list("teams")
    return EditController(
        gateway, "packages", Package,
        store=store, namespace="packages", image_field="image_url", single_image=True,
        context={"teams": [t["name"] for t in teams]},
    )

@app.post("/admin/packages")
async def create_package(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    team: Optional[str] = Form(None),
    duration: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    gateway: CollectionGateway = Depends(get_gateway),
    store: GridFSObjectStore = Depends(get_store),
):
    editor = await package_editor(gateway, store)
    editor.open_create()
    if image is not None:
        editor.stage_files(await read_uploads([image]))
    return await editor.submit(submitted(title=title, description=description, price=price, team=team, duration=duration))

@app.put("/admin/packages/{package_id}")
async def update_package(
    package_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    team: Optional[str] = Form(None),
    duration: Optional[str] = Form(None),
    remove_image: bool = Form(False),
    image: Optional[UploadFile] = File(None),
    gateway: CollectionGateway = Depends(get_gateway),
    store: GridFSObjectStore = Depends(get_store),
):
    editor = await package_editor(gateway, store)
    record = await gateway.get("packages", package_id)
    editor.open_edit(record)
    if remove_image and record.get("image_url"):
        editor.stage_removal(record["image_url"])
    if image is not None:
        editor.stage_files(await read_uploads([image]))
    return await editor.submit(submitted(title=title, description=description, price=price, team=team, duration=duration))

@app.delete("/admin/packages/{package_id}")
async def delete_package(
    package_id: str,
    gateway: CollectionGateway = Depends(get_gateway),
    store: GridFSObjectStore = Depends(get_store),
):
    editor = await package_editor(gateway, store)
    return await editor.delete(await gateway.get("packages", package_id))


# Shop & admin: products

def product_editor(gateway: CollectionGateway, store: GridFSObjectStore) -> EditController:
    return EditController(
        gateway, "products", Product,
        store=store, namespace="productImages", image_field="image_urls",
    )

@app.get("/products")
async def get_products(q: Optional[str] = Query(None), gateway: CollectionGateway = Depends(get_gateway)):
    filt = {}
    if q:
        # Simple case-insensitive name search
        filt["name"] = {"$regex": q, "$options": "i"}
    return await gateway.list("products", filt)

@app.get("/products/{product_id}")
async def get_product(product_id: str, gateway: CollectionGateway = Depends(get_gateway)):
    return await gateway.get("products", product_id)

@app.post("/admin/products")
async def create_product(
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    files: List[UploadFile] = File(default=[]),
    gateway: CollectionGateway = Depends(get_gateway),
    store: GridFSObjectStore = Depends(get_store),
):
    editor = product_editor(gateway, store)
    editor.open_create()
    editor.stage_files(await read_uploads(files))
    return await editor.submit(submitted(name=name, price=price, description=description))

@app.put("/admin/products/{product_id}")
async def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    removed: List[str] = Form(default=[]),
    files: List[UploadFile] = File(default=[]),
    gateway: CollectionGateway = Depends(get_gateway),
    store: GridFSObjectStore = Depends(get_store),
):
    editor = product_editor(gateway, store)
    editor.open_edit(await gateway.get("products", product_id))
    for ref in removed:
        editor.stage_removal(ref)
    editor.stage_files(await read_uploads(files))
    return await editor.submit(submitted(name=name, price=price, description=description))

@app.delete("/admin/products/{product_id}")
async def delete_product(
    product_id: str,
    gateway: CollectionGateway = Depends(get_gateway),
    store: GridFSObjectStore = Depends(get_store),
):
    editor = product_editor(gateway, store)
    return await editor.delete(await gateway.get("products", product_id))

@app.get("/files/{path:path}")
async def get_file(path: str, store: GridFSObjectStore = Depends(get_store)):
    obj = await store.open(path)
    return Response(content=obj.content, media_type=obj.content_type or "application/octet-stream")


# Cart & checkout

class CartAdd(BaseModel):
    product_id: str

class CartQuantity(BaseModel):
    quantity: int

@app.get("/cart/{cart_id}")
async def get_cart(cart_id: str, carts: CartRegistry = Depends(get_carts)):
    return cart_to_client(carts.find(cart_id))

@app.post("/cart/{cart_id}/items")
async def add_cart_item(
    cart_id: str,
    payload: CartAdd,
    carts: CartRegistry = Depends(get_carts),
    gateway: CollectionGateway = Depends(get_gateway),
):
    product = await gateway.get("products", payload.product_id)
    cart = carts.get(cart_id)
    cart.add_to_cart(product)
    return cart_to_client(cart)

@app.patch("/cart/{cart_id}/items/{product_id}")
async def set_cart_quantity(cart_id: str, product_id: str, payload: CartQuantity, carts: CartRegistry = Depends(get_carts)):
    cart = carts.find(cart_id)
    cart.set_quantity(product_id, payload.quantity)
    carts.release(cart_id)
    return cart_to_client(cart)

@app.delete("/cart/{cart_id}/items/{product_id}")
async def remove_cart_item(cart_id: str, product_id: str, carts: CartRegistry = Depends(get_carts)):
    cart = carts.find(cart_id)
    cart.remove_from_cart(product_id)
    carts.release(cart_id)
    return cart_to_client(cart)

@app.delete("/cart/{cart_id}")
async def clear_cart(cart_id: str, carts: CartRegistry = Depends(get_carts)):
    cart = carts.find(cart_id)
    cart.clear_cart()
    carts.drop(cart_id)
    return cart_to_client(cart)

@app.post("/cart/{cart_id}/checkout")
async def checkout(
    cart_id: str,
    details: dict[str, Any] = Body(...),
    carts: CartRegistry = Depends(get_carts),
    service: CheckoutService = Depends(get_checkout),
):
    try:
        billing = BillingDetails.model_validate(details)
    except SchemaError as e:
        raise ValidationError.from_pydantic(e) from e
    order = await service.checkout(carts.find(cart_id), billing)
    carts.release(cart_id)
    return {
        "order": order.model_dump(mode="json"),
        "redirect": service.redirect_to,
        "redirect_delay": service.display_delay,
    }

@app.post("/admin/notifications/retry")
async def retry_notifications(service: CheckoutService = Depends(get_checkout)):
    return {"sent": await service.retry_outbox()}


# Auth

@app.post("/auth/signup")
async def sign_up(
    payload: Credentials,
    gateway: CollectionGateway = Depends(get_gateway),
    sessions: SessionRegistry = Depends(get_sessions),
):
    token, provider, session = await sessions.open(gateway, settings.BCRYPT_ROUNDS)
    try:
        await AuthService(provider, gateway).sign_up(payload.email, payload.password)
    except Exception:
        sessions.close(token)
        raise
    return {"token": token, "state": session.state, "user": session.user}

@app.post("/auth/signin")
async def sign_in(
    payload: Credentials,
    gateway: CollectionGateway = Depends(get_gateway),
    sessions: SessionRegistry = Depends(get_sessions),
):
    token, provider, session = await sessions.open(gateway, settings.BCRYPT_ROUNDS)
    try:
        await AuthService(provider, gateway).sign_in(payload.email, payload.password)
    except Exception:
        sessions.close(token)
        raise
    return {"token": token, "state": session.state, "user": session.user}

@app.get("/auth/me")
async def me(token: str = Depends(bearer_token), sessions: SessionRegistry = Depends(get_sessions)):
    _, session = sessions.get(token)
    return {"state": session.state, "user": session.user}

@app.post("/auth/signout")
async def sign_out(
    token: str = Depends(bearer_token),
    gateway: CollectionGateway = Depends(get_gateway),
    sessions: SessionRegistry = Depends(get_sessions),
):
    provider, session = sessions.get(token)
    await AuthService(provider, gateway).sign_out()
    sessions.close(token)
    return {"state": session.state}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", settings.PORT)))
