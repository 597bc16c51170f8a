"""Control API for runtime management using FastAPI."""
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import logging
import time

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for runtime management."""

    def __init__(self, nozzle):
        """
        Initialize control API.

        Args:
            nozzle: Reference to the running nozzle
        """
        self.nozzle = nozzle
        self.app = FastAPI(title="Datadog Firehose Nozzle Control API")

        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get current nozzle status."""
            try:
                status_info = self.nozzle.status()
                status_info["config"] = {
                    "flush_interval_s": self.nozzle.config.nozzle.flush_interval_s,
                    "metric_prefix": self.nozzle.config.datadog.metric_prefix,
                    "deployment": self.nozzle.config.nozzle.deployment,
                }
                return status_info
            except Exception as e:
                logger.error(f"Error getting status: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/control/flush")
        async def flush():
            """Post the current window immediately."""
            try:
                logger.info("Flush requested via control API")
                self.nozzle.flush()
                return {"status": "flush_triggered", "timestamp": time.time()}
            except Exception as e:
                logger.error(f"Error triggering flush: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/control/slow_consumer")
        async def slow_consumer():
            """Raise the slow consumer alert for the current window."""
            logger.warning("Slow consumer alert raised via control API")
            self.nozzle.client.alert_slow_consumer_error()
            return {"status": "slow_consumer_alerted", "timestamp": time.time()}

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
