"""Recompute today's performance snapshot for one basket or all active baskets."""

from __future__ import annotations

import argparse
import asyncio

from basket_performance.config import get_settings
from basket_performance.core.logging import setup_logging
from basket_performance.db import Database
from basket_performance.providers.nav import build_price_provider
from basket_performance.schemas import render_metric
from basket_performance.services.scheduler import RecalculationScheduler
from basket_performance.services.snapshots import SnapshotService
from basket_performance.services.stores import SqlBasketStore, SqlSnapshotStore


async def _run(basket_id: str | None, delay: float | None) -> int:
    settings = get_settings()
    if delay is not None:
        settings = settings.model_copy(update={"inter_basket_delay_seconds": delay})
    database = Database(settings.database_url)
    await database.create_all()
    provider = build_price_provider(settings)
    service = SnapshotService(SqlBasketStore(database), SqlSnapshotStore(database), provider, settings=settings)
    try:
        if basket_id:
            snapshot = await service.recompute(basket_id)
            metrics = snapshot.basket_metrics
            print(f"Basket {basket_id} on {snapshot.calculation_date}")
            print(f"  CAGR 3Y:        {render_metric(metrics.get('cagr_3y'), suffix='%')}")
            print(f"  CAGR 5Y:        {render_metric(metrics.get('cagr_5y'), suffix='%')}")
            print(f"  Lumpsum return: {render_metric(metrics.get('lumpsum_return_percent'), suffix='%')}")
            print(f"  SIP XIRR:       {render_metric(metrics.get('sip_xirr'), suffix='%')}")
            print(f"  Rolling:        {snapshot.rolling_status} ({snapshot.sample_count} windows)")
            return 0
        scheduler = RecalculationScheduler(service, settings=settings)
        summary = await scheduler.run_all()
        print(f"Recalculated {summary.successful}/{summary.total} baskets, {summary.failed} failed")
        for failure in summary.errors:
            print(f"  {failure.basket_name} ({failure.basket_id}): {failure.error}")
        return 1 if summary.failed else 0
    finally:
        closer = getattr(getattr(provider, "delegate", provider), "aclose", None)
        if closer is not None:
            await closer()
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute basket performance snapshots")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--basket", help="Basket id to recompute")
    target.add_argument("--all", action="store_true", help="Recompute every active basket")
    parser.add_argument("--delay", type=float, default=None, help="Seconds to wait between baskets")
    args = parser.parse_args()
    setup_logging()
    raise SystemExit(asyncio.run(_run(args.basket, args.delay)))


if __name__ == "__main__":
    main()
