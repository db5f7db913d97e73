"""Load basket definitions from a JSON seed file into the database."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from basket_performance.config import get_settings
from basket_performance.core.logging import setup_logging
from basket_performance.db import Database
from basket_performance.schemas import BasketConfigRequest
from basket_performance.services.stores import SqlBasketStore

_BASKETS = TypeAdapter(list[BasketConfigRequest])


async def _load(seed_path: Path) -> int:
    try:
        baskets = _BASKETS.validate_python(json.loads(seed_path.read_text()))
    except ValidationError as exc:
        raise SystemExit(f"Invalid seed file {seed_path}:\n{exc}") from exc
    database = Database(get_settings().database_url)
    try:
        await database.create_all()
        store = SqlBasketStore(database)
        for basket in baskets:
            await store.save_basket(basket.to_basket())
    finally:
        await database.dispose()
    return len(baskets)


def main() -> None:
    parser = argparse.ArgumentParser(description="Load basket seed data into the database")
    parser.add_argument("seed_file", nargs="?", default=str(Path(__file__).with_name("baskets_seed.json")))
    args = parser.parse_args()
    seed_path = Path(args.seed_file)
    if not seed_path.exists():
        raise SystemExit(f"Seed file not found: {seed_path}")
    setup_logging()
    count = asyncio.run(_load(seed_path))
    print(f"Loaded {count} baskets from {seed_path}")


if __name__ == "__main__":
    main()
