from __future__ import annotations

from shared_context_bot.app import main


if __name__ == "__main__":
    main()
