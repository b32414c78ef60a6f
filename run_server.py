import uvicorn

from newsrelay.config import load_settings
from newsrelay.log import setup_logging

if __name__ == "__main__":
    settings = load_settings()
    setup_logging(settings.log_level)

    print(f"Starting newsrelay with {len(settings.feeds)} configured feeds...")
    print(f"Consumers connect to: ws://{settings.host}:{settings.port}/ws")

    uvicorn.run(
        "newsrelay.server:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
