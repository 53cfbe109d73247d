from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

# Load .env from the project root (where server.py runs)
load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))
logging.basicConfig(level=logging.INFO)

from app.main import app  # noqa: E402


def main() -> None:
    host = os.environ.get("HOST", "").strip() or "0.0.0.0"
    port = int(os.environ.get("PORT", "").strip() or 8000)
    logging.getLogger(__name__).info("Serving reel pipeline API on %s:%d", host, port)
    for route in app.routes:
        if hasattr(route, "path") and hasattr(route, "methods"):
            logging.info("App route: %s %s", sorted(route.methods) if route.methods else "GET", route.path)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
