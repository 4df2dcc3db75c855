"""Run the API with uvicorn: python -m tempcast"""

import uvicorn

from .settings import settings

if __name__ == "__main__":
    uvicorn.run("tempcast.main:app", host="127.0.0.1", port=8000, log_level=settings.log_level.lower())
