"""Run the rundev server: ``python -m rundev``."""

import argparse
import logging

import uvicorn

from rundev.server.config import get_settings


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="rundev session manager and proxy")
    parser.add_argument("--host", default=settings.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Single worker: sessions live in process memory
    uvicorn.run(
        "rundev.server:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        workers=1,
    )


if __name__ == "__main__":
    main()
