#!/usr/bin/env python3
"""
Banking Core Entry Point

Starts the FastAPI server with the banking core (ledger, chat, realtime).
Host, port and storage come from BANKING_* environment variables.
"""

import sys

from banking_core.api import run_server
from banking_core.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Banking Core...")
    print(f"💾 Storage backend: {config.storage_backend}")
    print("💰 All financial calculations use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        # Start the server
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False  # Set to True for development
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Banking Core...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
