from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feedesk.api.v1.cache.router import router as cache_router
from feedesk.api.v1.fee_structures.router import router as fee_structures_router
from feedesk.api.v1.fees.router import router as fees_router
from feedesk.api.v1.payments.router import config_router as payment_config_router
from feedesk.api.v1.payments.router import router as payments_router
from feedesk.api.v1.reports.router import router as reports_router
from feedesk.clients.fee_api import close_fee_api
from feedesk.core.config import settings
from feedesk.core.exceptions import ServiceError
from feedesk.core.logging import configure_logging
from feedesk.db.session import init_models


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    yield
    await close_fee_api()


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Feedesk", lifespan=lifespan)

    # CORS: the mobile and web clients call this gateway directly
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        # raised outside a router's try block, e.g. from a dependency
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Routers
    app.include_router(fee_structures_router)
    app.include_router(fees_router)
    app.include_router(payments_router)
    app.include_router(payment_config_router)
    app.include_router(reports_router)
    app.include_router(cache_router)

    return app


app = create_app()
