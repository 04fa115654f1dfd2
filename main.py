"""
Main entrypoint: FastAPI server for the local WalletLink UI.

Env: WALLETLINK_DB_PATH, ALCHEMY_API_KEY, HELIUS_API_KEY, API_HOST, API_PORT, LOG_LEVEL.
Binds to 127.0.0.1 by default; the API handles wallet passwords and must stay local.

Equivalent: uvicorn walletlink.api_server.app:app --host 127.0.0.1 --port 8000
"""

import os

# Configure structured JSON logging before other imports that may log
from walletlink.walletlink_logging import get_logger

logger = get_logger("main")


def main() -> None:
    from walletlink.api_server.app import app
    from walletlink.config import get_settings
    import uvicorn

    settings = get_settings()
    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port, db_path=str(settings.db_path))
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
