#!/usr/bin/env python3
"""
Field Collections Entry Point

Starts the FastAPI server with the collections core.
"""

import sys

from field_collections.api import run_server
from field_collections.config import get_config
from field_collections.logging_config import setup_logging


if __name__ == "__main__":
    settings = get_config()
    setup_logging(settings.log_level, log_format=settings.log_format, log_file=settings.log_file)

    print("Starting Field Collections...")
    print(f"Storage: {settings.database_url}")
    print(f"Operational timezone: {settings.operational_timezone}")
    print(f"API available at: http://localhost:{settings.api_port}")
    print(f"Documentation at: http://localhost:{settings.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Field Collections...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
