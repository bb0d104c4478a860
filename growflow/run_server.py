#!/usr/bin/env python3
"""
Server launcher.

    python -m growflow.run_server
"""

import os

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "growflow.api:app",
        host=os.environ.get("GROWFLOW_HOST", "127.0.0.1"),
        port=int(os.environ.get("GROWFLOW_PORT", "8000")),
        reload=os.environ.get("GROWFLOW_RELOAD", "").lower() in ("true", "1", "yes"),
    )
