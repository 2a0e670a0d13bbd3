"""
Application entry point
"""

import os
import uvicorn
from app.core.config import settings
from app.main import app

if __name__ == "__main__":
    # Hosting platforms inject PORT
    port = int(os.getenv("PORT", settings.PORT))
    uvicorn.run(
        "app.main:app" if settings.DEBUG else app,
        host=settings.HOST,
        port=port,
        reload=settings.DEBUG
    )
