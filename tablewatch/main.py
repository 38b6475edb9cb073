# tablewatch/main.py

"""
TableWatch API
- Live detection (POST /actions, POST /events)
- Risk and alert review for the trust & safety desk
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import ServiceSettings, setup_logging
from .engine import TableWatchEngine
from .routes.actions_router import actions_router
from .routes.alerts_router import alerts_router
from .routes.health_router import health_router
from .routes.metrics_router import metrics_router
from .routes.risk_router import risk_router

settings = ServiceSettings.from_env()
setup_logging(settings.log_level)


def create_app(engine: Optional[TableWatchEngine] = None) -> FastAPI:
    """Build the app; tests pass a pre-wired engine"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine or TableWatchEngine(settings)
        await app.state.engine.start()
        yield
        await app.state.engine.close()

    app = FastAPI(
        title="TableWatch Anti-Cheat API",
        description="Bot, collusion and multi-account detection for card-game tables",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ✅ Include all routers
    app.include_router(health_router)
    app.include_router(actions_router)
    app.include_router(risk_router)
    app.include_router(alerts_router)
    app.include_router(metrics_router)

    @app.get("/")
    async def root():
        """API info"""
        return {
            "service": "TableWatch Anti-Cheat API",
            "version": "0.1.0",
            "endpoints": {
                "detect": "POST /actions",
                "enqueue": "POST /events",
                "risk": "GET /risk/{player_id}",
                "pending_alerts": "GET /alerts/pending",
                "review": "POST /alerts/{alert_id}/review",
                "summary": "GET /alerts/summary",
                "metrics": "GET /metrics",
                "health": "GET /health",
            }
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
