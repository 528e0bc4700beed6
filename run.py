#!/usr/bin/env python3
"""Run the peer call service (control API and signaling relay) locally."""

import uvicorn

from src.peer_call.main import app
from src.peer_call.settings import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
