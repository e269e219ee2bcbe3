#!/usr/bin/env python3
"""
Start the staging API with uvicorn.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from shadowstage.core.config import validate_config
from shadowstage.util.logging import logger


def main():
    parser = argparse.ArgumentParser(description="Run the shadow staging API server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    for issue in validate_config():
        logger.warning(f"Config: {issue}")

    import uvicorn

    uvicorn.run("shadowstage.api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
