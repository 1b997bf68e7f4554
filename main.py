"""
Chore Ledger — Entry Point.

`python main.py` starts the Telegram bot.
`python main.py api` serves the HTTP API with uvicorn.
"""

import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from src.config import settings

if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "api":
        import uvicorn

        from src.api.web_api import create_app

        uvicorn.run(create_app(), host=settings.API_HOST, port=settings.API_PORT)
    else:
        from src.bot.telegram_bot import main

        main()
