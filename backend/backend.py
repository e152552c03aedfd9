import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from dojo_module import init_dojo_module, router as dojo_router
from dojo_module.config import Settings, settings as default_settings
from dojo_module.middleware import register_error_handlers

# Configure Logging
logging.basicConfig(
    level=getattr(logging, default_settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Initializing Database...")
        app.state.dojo = init_dojo_module(app_settings)
        report = app.state.dojo.report
        logger.info(
            f"Database Initialized. tables created: {len(report.created_tables)}, "
            f"columns added: {len(report.added_columns)}, failures: {len(report.failures)}"
        )
        yield
        # Shutdown
        logger.info("Shutting down...")
        app.state.dojo.engine.dispose()

    app = FastAPI(title="Dojo Admin API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    # Uploaded photos are served as plain files; the directory is created on startup.
    app.mount("/uploads", StaticFiles(directory=app_settings.uploads_dir, check_dir=False), name="uploads")
    app.include_router(dojo_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    # Keep reload OFF by default; set BACKEND_RELOAD=true for hot reload.
    try:
        if default_settings.reload:
            uvicorn.run("backend:app", host=default_settings.host, port=default_settings.port, reload=True)
        else:
            uvicorn.run(app, host=default_settings.host, port=default_settings.port)
    except OSError as e:
        if "address already in use" in str(e).lower():
            print(f"[Startup Error] Port {default_settings.port} is already in use. Stop the old process or set BACKEND_PORT to another port.")
        raise
