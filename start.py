"""Serves the review API with uvicorn, using the FLASHDRILL_* settings."""
import logging
import uvicorn
from flashdrill.config import settings


def main():
    logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
    logging.info(f"Serving decks from {settings.data_dir} on http://{settings.host}:{settings.port}")
    uvicorn.run(
        "flashdrill.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
