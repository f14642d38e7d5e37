#!/usr/bin/env python3
"""
Bank Ledger Service Entry Point

Starts the FastAPI server (port 8090 unless LEDGER_API_PORT says otherwise).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from bank_ledger.api import run_server
from bank_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Bank Ledger Service...")
    print(f"💾 Storage backend: {config.storage_backend}")
    print("🔒 Optimistic concurrency on every balance change")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()
    
    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\n👋 Shutting down Bank Ledger Service...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
