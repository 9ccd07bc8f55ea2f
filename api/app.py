from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recipe_importer.logging_config import setup_logging

from api.routes.ingredients import router as ingredients_router
from api.routes.recipes import router as recipes_router
from api.routes.uploads import router as uploads_router


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Recipe Importer API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(uploads_router)
    app.include_router(recipes_router)
    app.include_router(ingredients_router)

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
