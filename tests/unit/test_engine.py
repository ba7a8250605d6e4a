"""Unit tests for the adblock engine and its decision cache."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest


class TestBoundedCache:
    """Tests for the bounded decision cache."""

    def test_check_and_insert(self) -> None:
        from adfilter.adblock.cache import BoundedCache

        cache: BoundedCache[str] = BoundedCache("test", max_entries=4)
        assert cache.check("a") is None
        cache.insert("a", True)
        cache.insert("b", False)
        assert cache.check("a") is True
        assert cache.check("b") is False

        stats = cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["entries"] == 2

    def test_overflow_clears_whole_map(self) -> None:
        """Test that inserting into a full cache drops every entry first."""
        from adfilter.adblock.cache import BoundedCache

        cache: BoundedCache[str] = BoundedCache("test", max_entries=2)
        cache.insert("a", True)
        cache.insert("b", True)
        cache.insert("c", False)

        assert len(cache) == 1
        assert cache.check("a") is None
        assert cache.check("c") is False
        assert cache.get_stats()["overflows"] == 1

    def test_overwrite_does_not_overflow(self) -> None:
        from adfilter.adblock.cache import BoundedCache

        cache: BoundedCache[str] = BoundedCache("test", max_entries=1)
        cache.insert("a", True)
        cache.insert("a", False)
        assert cache.check("a") is False
        assert cache.get_stats()["overflows"] == 0

    def test_stale_generation_is_dropped(self) -> None:
        """Test that a value computed before a clear() is not stored."""
        from adfilter.adblock.cache import BoundedCache

        cache: BoundedCache[str] = BoundedCache("test")
        generation = cache.generation
        cache.clear()
        cache.insert("a", True, generation)
        assert cache.check("a") is None

        cache.insert("a", True, cache.generation)
        assert cache.check("a") is True

    def test_invalid_size(self) -> None:
        from adfilter.adblock.cache import BoundedCache

        with pytest.raises(ValueError):
            BoundedCache("test", max_entries=0)

    def test_request_key_includes_type_and_origin(self) -> None:
        from adfilter.adblock.cache import DecisionCache

        a = DecisionCache.request_key("https://x.com/a", "script", "example.com")
        b = DecisionCache.request_key("https://x.com/a", "image", "example.com")
        c = DecisionCache.request_key("https://x.com/a", "script", "other.com")
        assert len({a, b, c}) == 3


class TestAdblockEngine:
    """Tests for the adblock engine."""

    @pytest.fixture
    def engine(self):
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        engine.load_filter_list(
            "test",
            "\n".join(
                [
                    "||ads.com^",
                    "@@||ads.com/allowed^",
                    "||tracker.com^$third-party,image",
                    "||analytics.com/ga.js$script,redirect=noopjs",
                    "||shop.com^$removeparam=utm_source|fbclid",
                    "##.ad-banner",
                    "##.sponsored",
                    "example.com##.example-ad",
                    "example.com#@#.sponsored",
                    "##+js(abort-on-property-read, _ads)",
                    "example.com##+js(set-constant, ads, false)",
                    "sub.example.com#@#+js(set-constant, ads, false)",
                ]
            ),
        )
        return engine

    def test_load_filter_list_result(self) -> None:
        """Test that loading reports parsed and error counts."""
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        result = engine.load_filter_list("mixed", "! header\n||ads.com^\n##.ad\n||^\n##")

        assert result.name == "mixed"
        assert result.parsed == 2
        assert result.errors == 2
        assert result.network == 1
        assert result.cosmetic == 1
        assert engine.loaded_lists == [result]

    def test_should_block_request(self, engine) -> None:
        """Test the basic block decision."""
        from adfilter.adblock.rules import RequestType

        assert engine.should_block_request("https://ads.com/banner.js") is True
        assert engine.should_block_request("https://ads.com/allowed/x.js") is False
        assert engine.should_block_request("https://example.com/page") is False
        assert (
            engine.should_block_request("https://tracker.com/p.gif", RequestType.IMAGE, "news.com")
            is True
        )
        assert engine.should_block_request("https://tracker.com/p.gif", "image", "news.com") is True
        assert engine.should_block_request("https://tracker.com/p.js", "script", "news.com") is False

    @pytest.mark.parametrize("url", ["", "not a url", "about:blank", "http://[::1"])
    def test_unparseable_url_is_not_blocked(self, engine, url: str) -> None:
        """Test that bad URLs fail open."""
        assert engine.should_block_request(url, "script", "example.com") is False
        assert engine.get_redirect_resource(url) is None
        assert engine.get_remove_params(url) == []

    def test_default_list(self) -> None:
        """Test the built-in default list against a script request."""
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        engine.load_default_filter_lists()

        assert engine.should_block_request(
            "https://doubleclick.net/gampad/ads.js", "script", "example.com"
        )
        assert not engine.should_block_request("https://example.com/app.js", "script", "example.com")
        assert ".popup-ad" in engine.get_cosmetic_filters_for_domain("example.com")

    def test_generic_rule_with_scoped_exception(self) -> None:
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        engine.load_filter_list("a", "@@||example.com/allow^$domain=example.com\n||*/ads/*")

        assert engine.should_block_request("https://cdn.com/ads/banner.js", "script", "example.com")
        assert not engine.should_block_request(
            "https://example.com/allow/ads/x", "script", "example.com"
        )

    def test_exception_loaded_later_wins(self) -> None:
        """Test that an exception in a later list overrides an earlier block."""
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        engine.load_filter_list("block", "||ads.com^")
        assert engine.should_block_request("https://ads.com/x") is True

        engine.load_filter_list("allow", "@@||ads.com^")
        assert engine.should_block_request("https://ads.com/x") is False

    def test_load_twice_is_idempotent_for_decisions(self) -> None:
        """Test that loading the same list twice doubles rules but not answers."""
        from adfilter.adblock.engine import AdblockEngine

        content = "||ads.com^\n@@||ads.com/ok^\n##.ad"
        urls = ["https://ads.com/x", "https://ads.com/ok/x", "https://other.com/x"]

        engine = AdblockEngine()
        engine.load_filter_list("a", content)
        before = [engine.should_block_request(u) for u in urls]
        selectors = engine.get_cosmetic_filters_for_domain("example.com")

        engine.load_filter_list("a", content)
        assert engine.get_stats()["network_filters"] == 4
        assert engine.get_stats()["cosmetic_filters"] == 2
        assert [engine.should_block_request(u) for u in urls] == before
        assert engine.get_cosmetic_filters_for_domain("example.com") == selectors

    def test_disable_is_transparent(self, engine) -> None:
        """Test that disabling answers "allow" and re-enabling restores results."""
        urls = ["https://ads.com/x", "https://ads.com/allowed/x", "https://other.com/x"]
        before = [engine.should_block_request(u) for u in urls]

        engine.set_enabled(False)
        assert engine.enabled is False
        assert [engine.should_block_request(u) for u in urls] == [False, False, False]
        assert engine.get_cosmetic_filters_for_domain("example.com") == []
        assert engine.get_cosmetic_exceptions_for_domain("example.com") == []
        assert engine.get_script_filters_for_domain("example.com") == []
        assert engine.get_redirect_resource("https://analytics.com/ga.js", "script") is None
        assert engine.get_remove_params("https://shop.com/?utm_source=x") == []
        assert engine.is_filtered("https://ads.com/x") is False

        engine.set_enabled(True)
        assert [engine.should_block_request(u) for u in urls] == before

    def test_disabled_engine_does_not_touch_cache(self) -> None:
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine(enabled=False)
        engine.load_filter_list("a", "||ads.com^")
        engine.should_block_request("https://ads.com/x")
        engine.get_cosmetic_filters_for_domain("example.com")

        cache = engine.get_stats()["cache"]
        assert cache["requests"] == {"entries": 0, "hits": 0, "misses": 0, "overflows": 0}
        assert cache["domains"] == {"entries": 0, "hits": 0, "misses": 0, "overflows": 0}

    def test_decisions_are_cached(self, engine) -> None:
        engine.should_block_request("https://ads.com/x", "script", "example.com")
        engine.should_block_request("https://ads.com/x", "script", "example.com")
        engine.should_block_request("https://ads.com/x", "image", "example.com")

        stats = engine.get_stats()["cache"]["requests"]
        assert stats["hits"] == 1
        assert stats["misses"] == 2
        assert stats["entries"] == 2

    def test_cache_overflow(self) -> None:
        """Test that the engine keeps answering correctly after an overflow."""
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine(cache_max_entries=2)
        engine.load_filter_list("a", "||ads.com^")

        assert engine.should_block_request("https://ads.com/1") is True
        assert engine.should_block_request("https://ok.com/2") is False
        assert engine.should_block_request("https://ads.com/3") is True

        stats = engine.get_stats()["cache"]["requests"]
        assert stats["overflows"] == 1
        assert stats["entries"] == 1
        assert engine.should_block_request("https://ads.com/1") is True

    def test_load_invalidates_cached_decisions(self) -> None:
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        assert engine.should_block_request("https://ads.com/x") is False
        assert engine.get_cosmetic_filters_for_domain("example.com") == []

        engine.load_filter_list("a", "||ads.com^\n##.ad")
        assert engine.should_block_request("https://ads.com/x") is True
        assert engine.get_cosmetic_filters_for_domain("example.com") == [".ad"]

    def test_optimize_filters_is_lazy(self) -> None:
        """Test that the index is built once per rule set."""
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        engine.load_filter_list("a", "||ads.com^\n/banner.")

        compiled = engine.optimize_filters()
        assert compiled.network.index.indexed_count == 1
        assert engine.optimize_filters() is compiled

        engine.load_filter_list("b", "||more.com^")
        assert engine.optimize_filters() is not compiled
        assert engine.optimize_filters().network.index.indexed_count == 2

    def test_redirect_and_remove_params(self, engine) -> None:
        assert (
            engine.get_redirect_resource("https://analytics.com/ga.js", "script", "example.com")
            == "noopjs"
        )
        assert engine.get_redirect_resource("https://analytics.com/ga.js", "image") is None
        assert engine.get_remove_params("https://shop.com/p?utm_source=x") == [
            "utm_source",
            "fbclid",
        ]
        assert engine.get_remove_params("https://other.com/p?utm_source=x") == []

    def test_is_rewrite_only(self) -> None:
        """Test telling $removeparam-only matches from real blocks."""
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        engine.load_filter_list("a", "||ads.com^\n$removeparam=utm_source\n@@||ok.com^")

        assert engine.is_rewrite_only("https://news.example/?utm_source=x") is True
        assert engine.is_rewrite_only("https://ads.com/x.js?utm_source=x") is False
        assert engine.is_rewrite_only("https://ok.com/?utm_source=x") is False
        assert engine.is_rewrite_only("not a url") is False

        engine.set_enabled(False)
        assert engine.is_rewrite_only("https://news.example/?utm_source=x") is False

    def test_cosmetic_filters(self, engine) -> None:
        """Test selectors and exception selectors for a domain."""
        assert engine.get_cosmetic_filters_for_domain("other.com") == [".ad-banner", ".sponsored"]
        assert engine.get_cosmetic_filters_for_domain("https://www.example.com/page") == [
            ".ad-banner",
            ".sponsored",
            ".example-ad",
        ]
        assert engine.get_cosmetic_exceptions_for_domain("example.com") == [".sponsored"]
        assert engine.get_cosmetic_exceptions_for_domain("other.com") == []
        assert engine.get_cosmetic_filters_for_domain("") == []

    def test_cosmetic_negative_result_is_cached(self) -> None:
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        engine.load_filter_list("a", "example.com##.ad")

        assert engine.get_cosmetic_filters_for_domain("other.com") == []
        assert engine.get_cosmetic_filters_for_domain("other.com") == []
        assert engine.get_stats()["cache"]["domains"]["hits"] == 1

    def test_script_filters(self, engine) -> None:
        """Test scriptlet lookup with exceptions."""
        assert engine.get_script_filters_for_domain("example.com") == [
            "+js(abort-on-property-read, _ads)",
            "+js(set-constant, ads, false)",
        ]
        assert engine.get_script_filters_for_domain("sub.example.com") == [
            "+js(abort-on-property-read, _ads)",
        ]
        assert engine.get_script_filters_for_domain("") == []

    def test_is_filtered(self) -> None:
        """Test plain patterns and type-agnostic rules."""
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine()
        engine.load_filter_list("a", "||ads.com^\n||cdn.com^$script")
        engine.set_patterns(["/tracking/", ""])

        assert engine.is_filtered("https://example.com/tracking/pixel") is True
        assert engine.is_filtered("https://ads.com/x") is True
        assert engine.is_filtered("https://cdn.com/x.js") is False
        assert engine.is_filtered("https://example.com/") is False

    def test_statistics(self, engine) -> None:
        """Test that counters are tracked and reset."""
        engine.increment_blocked_request_count()
        engine.increment_blocked_request_count()
        engine.increment_blocked_element_count(5)

        assert engine.blocked_requests_count() == 2
        assert engine.blocked_elements_count() == 5

        stats = engine.get_stats()
        assert stats["enabled"] is True
        assert stats["lists"] == 1
        assert stats["network_filters"] == 5
        assert stats["cosmetic_filters"] == 4
        assert stats["scriptlet_filters"] == 3
        assert stats["blocked_requests"] == 2
        assert stats["blocked_elements"] == 5

        engine.reset_statistics()
        assert engine.blocked_requests_count() == 0
        assert engine.blocked_elements_count() == 0

    def test_clear_filter_lists(self, engine) -> None:
        engine.increment_blocked_request_count()
        assert engine.should_block_request("https://ads.com/x") is True

        engine.clear_filter_lists()

        assert engine.should_block_request("https://ads.com/x") is False
        assert engine.get_cosmetic_filters_for_domain("example.com") == []
        assert engine.loaded_lists == []
        assert engine.blocked_requests_count() == 0
        assert engine.filter_set.network_filters == ()

    def test_load_filter_list_file(self, tmp_path: Path) -> None:
        from adfilter.adblock.engine import AdblockEngine
        from adfilter.exceptions import FilterListLoadError

        path = tmp_path / "custom.txt"
        path.write_text("||ads.com^\n", encoding="utf-8")

        engine = AdblockEngine()
        result = engine.load_filter_list_file(path)
        assert result.name == "custom"
        assert engine.should_block_request("https://ads.com/x") is True

        with pytest.raises(FilterListLoadError):
            engine.load_filter_list_file(tmp_path / "missing.txt")
        assert len(engine.loaded_lists) == 1

    def test_concurrent_queries_during_load(self) -> None:
        """Test that readers never fail while lists are loaded."""
        from adfilter.adblock.engine import AdblockEngine

        engine = AdblockEngine(cache_max_entries=16)
        engine.load_filter_list("base", "||ads.com^")
        errors: list[BaseException] = []
        stop = threading.Event()

        def reader() -> None:
            try:
                while not stop.is_set():
                    for i in range(20):
                        assert engine.should_block_request(f"https://ads.com/{i}") is True
                        engine.should_block_request(f"https://example.com/{i}")
            except BaseException as e:
                errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for n in range(20):
            engine.load_filter_list(f"extra-{n}", f"||extra{n}.com^")
        engine.load_filter_list("allow", "@@||example.com^")
        stop.set()
        for t in threads:
            t.join()

        assert errors == []
        assert engine.should_block_request("https://extra19.com/x") is True


class TestEngineConfig:
    """Tests for building engines from configuration."""

    def test_from_config(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        """Test that configured lists load and unreadable ones are skipped."""
        from adfilter.adblock.engine import AdblockEngine
        from adfilter.config import AdfilterConfig

        good = tmp_path / "good.txt"
        good.write_text("||ads.com^\n", encoding="utf-8")
        config = AdfilterConfig(
            load_default_lists=False,
            filter_lists=[str(good), str(tmp_path / "missing.txt")],
            cache_max_entries=10,
        )

        with caplog.at_level(logging.WARNING, logger="adfilter"):
            engine = AdblockEngine.from_config(config)

        assert [lst.name for lst in engine.loaded_lists] == ["good"]
        assert engine.should_block_request("https://ads.com/x") is True
        assert "Skipping filter list" in caplog.text

    def test_from_config_defaults(self) -> None:
        from adfilter.adblock.engine import AdblockEngine
        from adfilter.adblock.filter_lists import DEFAULT_LIST_NAME
        from adfilter.config import AdfilterConfig

        engine = AdblockEngine.from_config(AdfilterConfig(enabled=False))
        assert engine.enabled is False
        assert [lst.name for lst in engine.loaded_lists] == [DEFAULT_LIST_NAME]

    def test_shared_engine(self) -> None:
        """Test the shared engine helper."""
        from adfilter.adblock.engine import get_adblock_engine, reset_adblock_engine
        from adfilter.config import AdfilterConfig

        reset_adblock_engine()
        try:
            engine = get_adblock_engine(AdfilterConfig(load_default_lists=False))
            assert get_adblock_engine() is engine
            assert engine.loaded_lists == []
        finally:
            reset_adblock_engine()
