import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from schoolfees.api.v1.fees.router import router as fees_router
from schoolfees.core.config import settings


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="School Fees Backend")

    # CORS: allow frontend to call this API. CORS_ORIGINS is a comma-separated list; unset allows all.
    origins = [o.strip() for o in (settings.cors_origins or "*").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(fees_router)

    return app


app = create_app()
