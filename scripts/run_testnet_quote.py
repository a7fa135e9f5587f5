#!/usr/bin/env python3
"""
Testnet quote launcher script.

This script asks the aggregator for the best route on testnet using the testnet.yaml
configuration, e.g. ``run_testnet_quote.py APT USDC 10``. Pass ``--wallet <address>``
to prepare a swap payload instead.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from aggregator.runner.service import main


if __name__ == "__main__":
    sys.argv = [
        "aggregator-quote",
        "--config",
        "configs/testnet.yaml",
        "--profile",
        "testnet",
        *sys.argv[1:],
    ]

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nQuote request cancelled by user.")
        sys.exit(0)
