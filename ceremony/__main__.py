"""
ceremony.__main__ — Entry point for ``python -m ceremony``
===========================================================

Wiring:
1. Load .env (DATABASE_URL, JWT_SECRET, CORS origins).
2. Configure logging.
3. Serve :data:`ceremony.api.main.app` with uvicorn.  The app's lifespan
   builds the engine, warms the cache and starts the refresh loop.

Run with::

    python -m ceremony            # HOST / PORT from the environment
"""

from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("ceremony")


def main() -> None:
    """Bootstrap and run the trigger API."""
    load_dotenv()

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting ceremony trigger API on %s:%d", host, port)

    # log_config=None keeps the basicConfig format for uvicorn's loggers too
    uvicorn.run("ceremony.api.main:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
