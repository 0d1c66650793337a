#!/usr/bin/env python3
"""
Run the knowledge search API with uvicorn.
Configuration is validated at start-up; a missing provider credential stops the server.
"""

import argparse
import sys
from pathlib import Path

import uvicorn

# Add the parent directory to sys.path to import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from knowledge_search.core.config import DEBUG, LOG_LEVEL, validate_config


def main():
    parser = argparse.ArgumentParser(description="Run the knowledge search API")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    issues = validate_config()
    if issues:
        for issue in issues:
            print(f"ERROR: {issue}")
        return 1

    uvicorn.run(
        "knowledge_search.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload or DEBUG,
        log_level=LOG_LEVEL.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
