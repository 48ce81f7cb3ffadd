"""Entry point for running the bot as a module via python -m verifybot"""

import asyncio

from verifybot.runtime import main


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
