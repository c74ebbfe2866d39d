import os
import sys

import uvicorn

from laundry_optimizer.errors import ProviderUnavailable
from laundry_optimizer.ollama_health import ensure_ollama_ready
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


def maybe_check_ollama() -> None:
    """
    Optionally run the Ollama preflight. Controlled by:
    - LAUNDRY_SKIP_OLLAMA_CHECK=true to skip entirely (useful in dev/tests)
    - LAUNDRY_OLLAMA_MODEL to pick the required model name.
    """
    if os.getenv("LAUNDRY_SKIP_OLLAMA_CHECK", "false").lower() in ("1", "true", "yes"):
        logger.info("Skipping Ollama preflight (LAUNDRY_SKIP_OLLAMA_CHECK=true)")
        return

    try:
        ensure_ollama_ready()
    except ProviderUnavailable as exc:
        logger.error(f"Ollama preflight failed: {exc.message}")
        logger.error("Set LAUNDRY_SKIP_OLLAMA_CHECK=true to bypass during dev/tests.")
        sys.exit(1)


if __name__ == "__main__":
    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), job_name="laundry_api")
    maybe_check_ollama()

    uvicorn.run(
        "laundry_optimizer.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
