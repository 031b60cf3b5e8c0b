"""
Entry point for the examdeck HTTP API.

Run with:
    uvicorn main:app --reload --port 8100
    python main.py
"""
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import uvicorn
from config import get_settings
from src.api.main import app
from src.core.logging_setup import configure_logging

settings = get_settings()
configure_logging(settings)

if __name__ == "__main__":
    uvicorn.run(
        "src.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
