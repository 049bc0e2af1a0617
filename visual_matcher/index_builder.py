"""
Batch pre-extraction of the product feature cache.

Searches populate the cache lazily, but a cold cache makes the first
search pay for every product's download and inference. This module warms
the cache ahead of time:

    python -m visual_matcher.index_builder --seed products.json --clear

Products whose image can't be fetched or processed are counted and
skipped; they will be retried lazily by the next search.
"""

import sys
import asyncio
import argparse
import logging
from typing import List, Optional

from .catalog import load_products_file
from .engine import SearchEngine
from .index import ProductIndex
from .models import Product
from .store import RedisStore

logger = logging.getLogger(__name__)


async def build_feature_cache(index: ProductIndex,
                              products: Optional[List[Product]] = None,
                              force: bool = False,
                              delay: float = 0.0) -> dict:
    """
    Compute and store features for every product in the catalog.

    Args:
        index: Product index (owns the store, extractor and fetcher).
        products: Products to process. Defaults to the whole catalog.
        force: Recompute even if a cached entry exists.
        delay: Seconds to sleep between downloads, to avoid hammering
               image hosts.

    Returns:
        Dict with 'success', 'total', 'processed', 'cached', 'errors'.
    """
    if products is None:
        products = await index.catalog.get_all_products()

    processed = 0
    cached = 0
    errors = 0

    logger.info(f"Building feature cache for {len(products)} products")

    for i, product in enumerate(products):
        if not force and await index.get_features(product.id) is not None:
            cached += 1
            continue

        logger.info(f"Processing {i + 1}/{len(products)}: {product.name}")
        try:
            entry = await index.compute_features(product)
        except Exception as e:
            logger.warning(f"Failed to process {product.name}: {e}")
            errors += 1
            continue

        if await index.store_features(product.id, entry):
            processed += 1
        else:
            errors += 1

        if delay > 0:
            await asyncio.sleep(delay)

    logger.info(
        f"Feature cache built: {processed} extracted, {cached} already cached, "
        f"{errors} errors"
    )

    return {
        "success": processed + cached > 0 or not products,
        "total": len(products),
        "processed": processed,
        "cached": cached,
        "errors": errors,
    }


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pre-extract product image features")
    parser.add_argument("--redis-url", help="Redis URL (default: $REDIS_URL)")
    parser.add_argument("--seed", help="JSON file of products to replace the catalog with")
    parser.add_argument("--clear", action="store_true",
                        help="Delete cached features before building")
    parser.add_argument("--force", action="store_true",
                        help="Recompute features even when cached")
    parser.add_argument("--color", action="store_true",
                        help="Also cache color histograms")
    parser.add_argument("--delay", type=float, default=0.5,
                        help="Seconds between downloads (default: 0.5)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


async def rebuild(engine: SearchEngine, args: argparse.Namespace) -> dict:
    """Seed and clear as requested, then build the cache for the current catalog."""
    catalog = engine.catalog
    if args.seed:
        await catalog.initialize_products(load_products_file(args.seed))
    products = await catalog.get_all_products()
    if args.clear:
        await engine.index.clear_features(products)
    return await build_feature_cache(
        engine.index, products=products, force=args.force, delay=args.delay
    )


async def run(args: argparse.Namespace) -> dict:
    store = RedisStore(url=args.redis_url)
    async with SearchEngine(store=store, with_color=args.color) as engine:
        return await rebuild(engine, args)



def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    stats = asyncio.run(run(args))
    total = stats["total"] or 1
    logger.info(
        f"Total products: {stats['total']}, features available: "
        f"{stats['processed'] + stats['cached']} "
        f"({round(100 * (stats['processed'] + stats['cached']) / total)}%)"
    )
    return 0 if stats["success"] else 1


if __name__ == "__main__":
    sys.exit(main())
