import asyncio
import inspect
import logging

import typer
from dotenv import load_dotenv
from InquirerPy import inquirer


load_dotenv()

from event_indexer.app.config import settings  # noqa: E402
from event_indexer.app.interface.tasks import TASKS  # noqa: E402


logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

app = typer.Typer()
indexer_app = typer.Typer(help="cli for indexing contract events.")
app.add_typer(indexer_app, name="indexer")


def _block_selector(value: str) -> int | str:
    value = value.strip()
    return int(value) if value.isdigit() else value


@indexer_app.command("serve")
def serve() -> None:
    """Run the indexer and the query API until interrupted."""
    asyncio.run(TASKS["serve"]())


@indexer_app.command("backfill")
def backfill(
    from_block: str = typer.Option("earliest", "--from-block", help="Block number or 'earliest'."),
    to_block: str = typer.Option("latest", "--to-block", help="Block number or 'latest'."),
) -> None:
    """Index a block range once without moving the sweep cursor."""
    asyncio.run(
        TASKS["backfill"](
            from_block=_block_selector(from_block),
            to_block=_block_selector(to_block),
        )
    )


@indexer_app.command("stats")
def stats() -> None:
    """Print indexing statistics."""
    asyncio.run(TASKS["stats"]())


@indexer_app.command("run")
def run() -> None:
    task_name = inquirer.select(
        message="Select task:",
        choices=list(TASKS.keys()),
        pointer="❯",
        instruction="Use ↑/↓ to move, Enter to select",
    ).execute()

    task = TASKS[task_name]

    kwargs: dict[str, object] = {}

    params = inspect.signature(task).parameters

    if "from_block" in params:
        kwargs["from_block"] = _block_selector(
            inquirer.text(
                message="From block (inclusive):",
                default="earliest",
            ).execute()
        )
    if "to_block" in params:
        kwargs["to_block"] = _block_selector(
            inquirer.text(
                message="To block (inclusive):",
                default="latest",
            ).execute()
        )

    asyncio.run(task(**kwargs))  # type: ignore


if __name__ == "__main__":
    BANNER = r"""
      --- Event Indexer CLI ---
    """
    typer.echo(BANNER)
    app()
