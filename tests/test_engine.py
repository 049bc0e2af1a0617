"""Tests for the SearchEngine facade and the feature cache builder."""

import asyncio
import json

import httpx
import pytest

from visual_matcher.embedder import Backbone
from visual_matcher.engine import SearchEngine
from visual_matcher.exceptions import DecodeError, ImageNotFoundError, ModelError
from visual_matcher.fetcher import ImageFetcher
from visual_matcher.index import features_key
from visual_matcher.index_builder import build_feature_cache, parse_args, rebuild
from visual_matcher.models import FeatureEntry, Product
from visual_matcher.store import MemoryStore

from conftest import mock_fetcher, tiny_model

IMG1 = "https://img.example.com/one.png"
IMG2 = "https://img.example.com/two.png"
QUERY = "https://uploads.example.com/query.png"
UNREACHABLE = "https://unreachable.invalid/missing.png"

PRODUCTS = [
    Product(id="A", name="Red A", category="Test", image_url=IMG1),
    Product(id="B", name="Blue B", category="Test", image_url=IMG2),
    Product(id="C", name="Broken C", category="Test", image_url=UNREACHABLE),
]


def make_engine(images, store=None, **kwargs):
    return SearchEngine(
        store=store or MemoryStore(),
        fetcher=mock_fetcher(images),
        backbone=Backbone(model_factory=tiny_model, device="cpu"),
        **kwargs,
    )


@pytest.fixture
def images(red_square_png, blue_circle_png):
    return {IMG1: red_square_png, IMG2: blue_circle_png, QUERY: red_square_png}


class TestSearchEngine:

    def test_lifecycle(self, images):
        async def _run():
            engine = make_engine(images)
            async with engine:
                assert engine.backbone.is_ready
            return engine

        engine = asyncio.run(_run())
        assert not engine.backbone.is_ready

    def test_extract_before_start_raises(self, images, red_square_png):
        engine = make_engine(images)
        with pytest.raises(ModelError):
            asyncio.run(engine.extract_features(red_square_png))

    def test_search_by_image(self, images, red_square_png):
        async def _run():
            async with make_engine(images) as engine:
                await engine.catalog.initialize_products(PRODUCTS)
                return await engine.search_by_image(red_square_png)

        results = asyncio.run(_run())
        ids = [r.product.id for r in results]
        assert ids[0] == "A"
        assert "C" not in ids
        assert results[0].match_percentage == 100

    def test_search_by_url(self, images):
        async def _run():
            async with make_engine(images) as engine:
                await engine.catalog.initialize_products(PRODUCTS)
                return await engine.search_by_url(QUERY)

        results = asyncio.run(_run())
        assert results[0].product.id == "A"

    def test_url_and_bytes_give_same_vector(self, images, red_square_png):
        async def _run():
            async with make_engine(images) as engine:
                from_bytes = await engine.extract_features(red_square_png)
                from_url = await engine.extract_features_from_url(QUERY)
                return from_bytes, from_url

        a, b = asyncio.run(_run())
        assert (a == b).all()

    def test_query_fetch_errors_propagate(self, images):
        def handler(request):
            return httpx.Response(404)

        async def _run():
            engine = SearchEngine(
                store=MemoryStore(),
                fetcher=ImageFetcher(transport=httpx.MockTransport(handler)),
                backbone=Backbone(model_factory=tiny_model, device="cpu"),
            )
            async with engine:
                await engine.search_by_url(QUERY)

        with pytest.raises(ImageNotFoundError) as exc:
            asyncio.run(_run())
        assert exc.value.user_message == "Image not found at the provided URL (404)."

    def test_query_decode_error_propagates(self, images):
        async def _run():
            async with make_engine(images) as engine:
                await engine.search_by_image(b"not an image")

        with pytest.raises(DecodeError):
            asyncio.run(_run())

    def test_color_blend(self, images, red_square_png):
        async def _run():
            async with make_engine(images, with_color=True) as engine:
                await engine.catalog.initialize_products(PRODUCTS)
                return await engine.search_by_image(red_square_png)

        results = asyncio.run(_run())
        assert results[0].product.id == "A"
        assert results[0].similarity == pytest.approx(1.0)

    def test_category_lookup(self, images):
        async def _run():
            async with make_engine(images) as engine:
                await engine.catalog.initialize_products(PRODUCTS)
                return await engine.catalog.get_products_by_category("test")

        assert len(asyncio.run(_run())) == 3


class TestBuildFeatureCache:

    def test_counts_and_skips_failures(self, images):
        store = MemoryStore()

        async def _run():
            async with make_engine(images, store=store) as engine:
                await engine.catalog.initialize_products(PRODUCTS)
                first = await build_feature_cache(engine.index)
                second = await build_feature_cache(engine.index)
                return first, second

        first, second = asyncio.run(_run())

        assert first == {"success": True, "total": 3, "processed": 2, "cached": 0, "errors": 1}
        assert second == {"success": True, "total": 3, "processed": 0, "cached": 2, "errors": 1}
        assert features_key("A") in store.data
        assert features_key("C") not in store.data

    def test_force_recomputes(self, images):
        async def _run():
            async with make_engine(images) as engine:
                await engine.catalog.initialize_products(PRODUCTS[:2])
                await build_feature_cache(engine.index)
                return await build_feature_cache(engine.index, force=True)

        stats = asyncio.run(_run())
        assert stats["processed"] == 2
        assert stats["cached"] == 0

    def test_nothing_processed_is_failure(self, images):
        async def _run():
            async with make_engine(images) as engine:
                await engine.catalog.initialize_products(PRODUCTS[2:])
                return await build_feature_cache(engine.index)

        assert asyncio.run(_run())["success"] is False

    def test_parse_args(self):
        args = parse_args(["--seed", "products.json", "--clear", "--delay", "0"])
        assert args.seed == "products.json"
        assert args.clear
        assert args.delay == 0.0
        assert not args.force

    def test_clear_with_seed_rebuilds_seeded_products(self, images, tmp_path):
        seed = tmp_path / "products.json"
        seed.write_text(json.dumps([p.to_dict() for p in PRODUCTS[:2]]))
        store = MemoryStore()
        # Stale entry for a product that is also in the new seed
        store.data[features_key("A")] = "[1.0, 2.0, 3.0]"

        async def _run():
            async with make_engine(images, store=store) as engine:
                await engine.catalog.initialize_products([PRODUCTS[2]])
                args = parse_args(["--seed", str(seed), "--clear", "--delay", "0"])
                return await rebuild(engine, args)

        stats = asyncio.run(_run())

        assert stats == {"success": True, "total": 2, "processed": 2, "cached": 0, "errors": 0}
        assert FeatureEntry.loads(store.data[features_key("A")]).dim == 48
