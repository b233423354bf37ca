#!/usr/bin/env python3
"""CalDAV Tasks - Simple startup script."""

import sys
import os

# Add current directory to Python path for Docker compatibility
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config import load_config
from presentation import create_app


def main():
    """Main entry point."""
    try:
        config = load_config()
        config.setup_logging()

        app = create_app(config)

        print("Starting CalDAV Tasks...")
        print(f"Server: http://{config.server.host}:{config.server.port}")

        app.run(
            host=config.server.host,
            port=config.server.port,
            debug=config.server.debug,
            use_reloader=False  # One event loop thread per process
        )

    except KeyboardInterrupt:
        print("\nShutting down server...")
    except Exception as e:
        print(f"Failed to start server: {e}")
        raise


if __name__ == '__main__':
    main()
