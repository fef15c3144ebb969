"""
Report Delivery Worker Runner
Run this as a separate process when ARQ/Redis is not available: python run_delivery_worker.py
"""

import asyncio
import logging
import sys

from consultorio.workers.report_delivery import run_delivery_worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("🚀 Starting Report Delivery Worker...")
    try:
        asyncio.run(run_delivery_worker())
    except KeyboardInterrupt:
        logger.info("👋 Delivery worker stopped by user")
    except Exception as e:
        logger.error(f"❌ Delivery worker crashed: {e}")
        sys.exit(1)
