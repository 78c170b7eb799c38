from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app import database
from app.cart import CartStore
from app.errors import ShopError
from app.logging_config import configure_logging
from app.routes import cart_router, order_router, payment_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    database.Base.metadata.create_all(bind=database.engine)
    if getattr(app.state, "cart_store", None) is None:
        app.state.cart_store = CartStore()
    yield


def create_app(cart_store: CartStore = None) -> FastAPI:
    app = FastAPI(title="Shop Orders Service", lifespan=lifespan)
    app.state.cart_store = cart_store

    app.include_router(cart_router)
    app.include_router(order_router)
    app.include_router(payment_router)

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [{"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]} for e in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"kind": "invalid_input", "message": "Validation error", "errors": errors},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", path=request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"kind": "internal_error", "message": "Internal server error"})

    @app.get("/health")
    def health():
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()
