# provisioning_engine/run_api.py
"""Run the provisioning HTTP API."""

import logging

import uvicorn

from provisioning_engine.config import settings

# Setup logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    logger.info("=" * 80)
    logger.info("PROVISIONING ENGINE API")
    logger.info("=" * 80)
    logger.info(f"Listening on {settings.api_host}:{settings.api_port}")
    logger.info(f"Fallback base branch: {settings.fallback_base_branch or 'disabled'}")
    logger.info("=" * 80)

    uvicorn.run(
        "provisioning_engine.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
