"""FastAPI application entry point for the theme pipeline API."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os
from server.api.routers.JobRouter import job_router
from server.api.routers.QueryRouter import query_router
from services.pipeline.PipelineContext import PipelineContext
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


def create_app(context_builder: Callable[[HelperConfig], PipelineContext] = PipelineContext) -> FastAPI:
    """Build the API app. context_builder creates the pipeline object graph at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown."""
        app.state.logging = setup_logging()
        app.state.config = HelperConfig(logger=app.state.logging)

        # Initialise and boot the pipeline
        context = context_builder(app.state.config)
        await context.boot()
        app.state.context = context
        app.state.query_service = context.query_service

        # Optionally run the workers in the API process (single-node deployments)
        if app.state.config.get_bool_val("API_RUN_WORKERS", default=False):
            context.pool.start()

        app.state.logging.info("Theme pipeline API ready.")
        yield

        # Shutdown
        await context.close()
        app.state.logging.info("Theme pipeline API shut down.")

    app = FastAPI(
        title="Theme Embedding Pipeline",
        description="Chunking, embedding and theme tagging of journal texts and reference fragments.",
        version=app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(job_router)
    app.include_router(query_router)
    return app


app = create_app()


# Server Start
if __name__ == "__main__":
    # start server
    import uvicorn
    port = int(os.getenv("API_PORT", "8000"))
    logging.info(f"Starting theme pipeline API v{app_version} from root dir: {os.getenv('ROOT_DIR', os.getcwd())} on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port)
