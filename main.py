"""
Main entrypoint: risk gate FastAPI server.

Env: RISKGATE_RPC_URL, RISKGATE_STORE, RISKGATE_DB_URL, API_HOST, API_PORT, LOG_LEVEL, etc.

Equivalent: uvicorn backend_riskgate.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured JSON logging before other imports that may log
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Run the FastAPI server in the main thread."""
    from backend_riskgate.config import get_settings
    from backend_riskgate.config.env import mask_rpc_url

    settings = get_settings()
    logger.info(
        "main_server_starting",
        host=settings.api_host,
        port=settings.api_port,
        rpc=mask_rpc_url(settings.rpc_url),
        store=settings.store_backend,
    )

    from backend_riskgate.api_server.app import app
    import uvicorn

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
