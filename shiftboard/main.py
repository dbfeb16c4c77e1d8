from __future__ import annotations

import argparse
import os

import uvicorn

from .config import configure_logging


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the shift board API server.")
    parser.add_argument("--host", default=os.getenv("SHIFTBOARD_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("SHIFTBOARD_PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development).")
    args = parser.parse_args(argv)

    configure_logging()
    uvicorn.run("shiftboard.api:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
