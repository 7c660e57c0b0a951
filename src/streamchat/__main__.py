"""Entry point: python -m streamchat"""
from __future__ import annotations

import logging
import os

from .app import ChatApp


def main() -> None:
    """Launch the StreamChat TUI."""
    log_file = os.environ.get("STREAMCHAT_LOG_FILE")
    if log_file:
        logging.basicConfig(
            filename=log_file,
            level=os.environ.get("STREAMCHAT_LOG_LEVEL", "INFO").upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    app = ChatApp()
    app.run()


if __name__ == "__main__":
    main()
