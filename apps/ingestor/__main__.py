"""
Ingestor Module Entry Point

Allows execution via: python -m apps.ingestor

Delegates to the consumer for all execution modes (continuous and RUN_ONCE).
"""

import asyncio

from apps.ingestor.consumer import main

if __name__ == "__main__":
    asyncio.run(main())
