"""
Run the Grant Application Assistant API server.

Usage:
    python -m src.scripts.run_api [--reload] [--port 8000]

Settings are read from the environment (.env is loaded if present).
"""

import sys
import argparse
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))


def main():
    """Run the API server."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run Grant Application Assistant API")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--workers", type=int, default=1, help="Worker processes (ignored with --reload)")

    args = parser.parse_args()

    import uvicorn

    uvicorn.run(
        "src.api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=None if args.reload else args.workers,
    )


if __name__ == "__main__":
    main()
