#!/usr/bin/env python
"""
Start the AgriConnect FastAPI service.
"""

import argparse
import logging
import os
import sys

import uvicorn

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from agriconnect.infra.config import get_config

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Start the AgriConnect FastAPI service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run_web.py                              # default settings
    python run_web.py --port 8080                  # listen on 8080
    python run_web.py --backend-url http://127.0.0.1:54321
    python run_web.py --reload                     # auto reload (development)
        """
    )

    parser.add_argument(
        '--host',
        type=str,
        default='0.0.0.0',
        help='bind address (default: 0.0.0.0)'
    )

    parser.add_argument(
        '--port',
        type=int,
        default=None,
        help='port (default: FASTAPI_PORT or 8000)'
    )

    parser.add_argument(
        '--backend-url',
        type=str,
        default=None,
        help='managed backend base URL (overrides BACKEND_URL)'
    )

    parser.add_argument(
        '--reload',
        action='store_true',
        help='enable auto reload (development)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        default=1,
        help='worker processes (default: 1)'
    )

    args = parser.parse_args()

    if args.backend_url:
        os.environ['BACKEND_URL'] = args.backend_url
        get_config.cache_clear()
    cfg = get_config()
    port = args.port or cfg.fastapi_port
    display_host = args.host if args.host != '0.0.0.0' else 'localhost'

    logger.info(f"Starting AgriConnect: http://{display_host}:{port}")
    logger.info(f"Backend: {cfg.backend_url}")
    logger.info(f"Auto reload: {args.reload}")
    logger.info(f"Workers: {args.workers}")
    logger.info(f"API docs: http://{display_host}:{port}/docs")

    uvicorn.run(
        "agriconnect.api.server:app",
        host=args.host,
        port=port,
        reload=args.reload,
        workers=args.workers if not args.reload else 1,
        log_level="info"
    )


if __name__ == '__main__':
    main()
