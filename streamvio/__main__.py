"""
Entry point: python -m streamvio [--config PATH] [--host HOST] [--port PORT]
"""

import argparse
import logging

import uvicorn

from . import __version__
from .config import load_config, set_config
from .logging_config import setup_logging

logger = logging.getLogger("streamvio")


def main() -> None:
    parser = argparse.ArgumentParser(description="StreamVio transcoding engine")
    parser.add_argument("--config", "-c", help="Path to streamvio.yaml")
    parser.add_argument("--host", help="Override server host")
    parser.add_argument("--port", type=int, help="Override server port")
    parser.add_argument("--version", action="version", version=f"streamvio {__version__}")
    args = parser.parse_args()

    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    set_config(config)
    setup_logging(config.logging)

    from .api import create_app

    app = create_app(config)
    logger.info(f"Listening on {config.server.host}:{config.server.port}")
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
