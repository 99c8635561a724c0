import asyncio

from logging_setup import configure_logging

configure_logging("moderation-api")

from database import init_db
from api_server import create_api_app, start_api_server, stop_api_server


async def main():
    """Application entry point."""
    await init_db()

    api_app = create_api_app()
    api_runner = await start_api_server(api_app)

    try:
        # Serve until the process is cancelled.
        await asyncio.Event().wait()
    finally:
        await stop_api_server(api_runner)


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
