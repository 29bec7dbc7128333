#!/usr/bin/env python3
"""
Simple script to start the API server with error handling
"""

import os
import sys
import traceback
from pathlib import Path

try:
    print("Starting DeepSearch API Server...")
    print("=" * 70)

    base_dir = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(base_dir))

    from apps.api.api_server import ResearchAPIServer
    from deepsearch.utils.logger_config import setup_logging

    server = ResearchAPIServer(config_path=os.getenv("DEEPSEARCH_CONFIG"))
    logging_cfg = server.config.get("logging", {}) or {}
    setup_logging(logging_cfg.get("level", "INFO"), logging_cfg.get("log_dir"), "api.log")

    server_cfg = server.config.get("server", {}) or {}
    host = os.getenv("HOST", server_cfg.get("host", "0.0.0.0"))
    port = int(os.getenv("PORT", server_cfg.get("port", 3000)))

    print(f"  - Model: {server.model_id}")
    print(f"  - Auth: {'bearer secret' if server.secret else 'disabled'}")
    print(f"  - Host: {host}")
    print(f"  - Port: {port}")
    print("  - Endpoints: GET /health, POST /v1/chat/completions")
    print("  - Press CTRL+C to quit")
    print("=" * 70)

    server.run(host=host, port=port)

except Exception as e:
    print("\nError starting server:")
    print(f"  - Exception type: {type(e).__name__}")
    print(f"  - Error message: {str(e)}")
    print("\nTraceback:")
    traceback.print_exc()
    sys.exit(1)
