#!/usr/bin/env python3
"""
PickleBank Entry Point

Starts the FastAPI server with the ledger engine. Host, port, storage and
notifier come from PICKLEBANK_* environment variables or .env.
"""

import sys

from picklebank.api import run_server
from picklebank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🥒 Starting PickleBank API...")
    print(f"💾 Storage: {config.storage_backend} ({config.database_path})")
    print(f"🔐 Security codes valid for {config.code_ttl_seconds}s")
    if config.discord_token:
        print("💬 Codes delivered by Discord DM")
    elif config.notifier_url:
        print(f"📨 Codes delivered via {config.notifier_url}")
    else:
        print("⚠️  No notifier configured, codes will not be delivered")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\n👋 Shutting down PickleBank...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
