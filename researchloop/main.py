from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from researchloop.api.routes import health, research, screenshots
from researchloop.config import settings
from researchloop.services.job_service import JobService, Services, build_services
from researchloop.services.logger import configure_logging


def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        configure_logging()
        Path(settings.artifacts_dir).mkdir(parents=True, exist_ok=True)
        service = JobService(services or build_services())
        app.state.job_service = service
        yield
        # Shutdown
        await service.runner.shutdown()
        await service.job_store.close()

    app = FastAPI(
        title="researchloop",
        description="Multi-round web research that turns a topic into a report",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    app.include_router(research.router)
    app.include_router(health.router)
    app.include_router(screenshots.router)

    app.mount(
        settings.artifacts_public_prefix,
        StaticFiles(directory=settings.artifacts_dir, check_dir=False),
        name="screenshots",
    )
    return app


app = create_app()
