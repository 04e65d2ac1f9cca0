import uvicorn
from fastapi import FastAPI

from voucher_redemption.api.routes.fraud_cases import router as fraud_cases_router
from voucher_redemption.api.routes.health import router as health_router
from voucher_redemption.api.routes.redemptions import router as redemptions_router
from voucher_redemption.core.config import get_settings
from voucher_redemption.core.logging import configure_logging


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Voucher Redemption API",
        version="0.1.0",
        docs_url="/docs" if settings.app_env == "dev" else None,
        redoc_url="/redoc" if settings.app_env == "dev" else None,
    )
    app.include_router(health_router)
    app.include_router(redemptions_router)
    app.include_router(fraud_cases_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "voucher_redemption.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
