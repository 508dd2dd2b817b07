"""
Quran Hifz - FastAPI Backend

Runs the engine's HTTP adapter:
- passage segmentation
- transcript assessment
- in-memory learn sessions
"""

import logging

import uvicorn

from quran_hifz.service import create_app

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    logger.info("Starting Quran Hifz API on port 8000")
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
