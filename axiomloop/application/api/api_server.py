from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from axiomloop.application.api.route.agent import router as agent_router
from axiomloop.domain.orchestration.core.agent_runner import AgentRunner
from axiomloop.domain.orchestration.surfaces import SURFACES
from axiomloop.infrastructure.config.settings import Settings, get_settings
from axiomloop.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


def create_app(runner: Optional[AgentRunner] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the HTTP app; the agent runner is created on first request when not injected"""

    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    app = FastAPI(title="Axiomloop Agent Server")
    app.state.settings = settings
    app.state.runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(agent_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": settings.service_name,
            "surfaces": list(SURFACES),
            "metrics": metrics.get_metrics_summary(),
        }

    logger.info("Agent server configured", model=settings.openai_model, max_steps=settings.max_steps)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
