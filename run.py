#!/usr/bin/env python3
"""
Mobile Bank Entry Point

Starts the FastAPI server for the mobile banking transfer core.
"""

import sys

from mobile_bank.api import run_server
from mobile_bank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Mobile Bank API...")
    print("🔒 Transfers run in a single locked database transaction")
    print("💰 All amounts use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False  # Set to True for development
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Mobile Bank API...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
