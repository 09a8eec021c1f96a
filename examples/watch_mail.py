import asyncio
import os

from dotenv import load_dotenv

from apiwatch import ApiResponse, EventKind, connect
from apiwatch.auth import StaticTokenProvider
from apiwatch.utils.logging import setup_logging

load_dotenv()


def on_change(current: ApiResponse, previous: ApiResponse | None) -> None:
    print(f"Mailbox changed: {previous.version if previous else None} -> {current.version}")


async def main() -> None:
    setup_logging()
    tokens = StaticTokenProvider(tokens={"alice": os.environ["EXAMPLE_ACCESS_TOKEN"]})
    async with connect(
        os.getenv("EXAMPLE_API_DOCUMENT", "swagger.json"),
        token_provider=tokens,
    ) as client:
        await client.subscribe(
            "/characters/{character_id}/mail/",
            "get",
            EventKind.change,
            on_change,
            parameters={"character_id": [90000001, 90000002]},
            users=["alice"],
        )
        await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(main())
