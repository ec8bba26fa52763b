"""
Unit tests for shared/infrastructure/fetcher.py
"""
import pytest
from unittest.mock import AsyncMock
from xml.etree import ElementTree as ET

from shared.infrastructure.fetcher import (
    FetchResult,
    PoliteFetcher,
    RobotsRules,
    is_path_allowed,
    parse_robots_text,
    parse_sitemap_document,
)


def _urlset(*locs):
    entries = "".join(f"<url><loc>{loc}</loc></url>" for loc in locs)
    return f'<?xml version="1.0"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'


def _index(*locs):
    entries = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return f'<?xml version="1.0"?><sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</sitemapindex>'


def _fetcher_serving(documents):
    """PoliteFetcher whose fetch_polite answers from a url -> body map (404 otherwise)."""
    fetcher = PoliteFetcher()

    async def fake_fetch(url, min_delay=None, kind='page'):
        if url in documents:
            return FetchResult(url=url, status=200, body=documents[url])
        return FetchResult(url=url, status=404, error="HTTP 404")

    fetcher.fetch_polite = AsyncMock(side_effect=fake_fetch)
    return fetcher


class TestIsPathAllowed:
    """Tests for is_path_allowed function."""

    def test_disallowed_prefix_blocks_path(self):
        """A path under a Disallow prefix is blocked."""
        rules = RobotsRules(disallowed=["/admin"])
        assert is_path_allowed("/admin/x", rules) is False

    def test_unrelated_path_is_allowed(self):
        """Paths outside every Disallow prefix are allowed."""
        rules = RobotsRules(disallowed=["/admin"])
        assert is_path_allowed("/products", rules) is True

    def test_more_specific_allow_wins(self):
        """An Allow prefix more specific than the Disallow re-opens the path."""
        rules = RobotsRules(disallowed=["/admin"], allowed=["/admin/public"])
        assert is_path_allowed("/admin/public/x", rules) is True
        assert is_path_allowed("/admin/private", rules) is False

    def test_root_disallow_blocks_everything(self):
        """Disallow: / blocks the homepage and every other path."""
        rules = RobotsRules(disallowed=["/"])
        for path in ["/", "/about", "/blog/post"]:
            assert is_path_allowed(path, rules) is False, f"Failed for: {path}"

    def test_empty_rules_allow_everything(self):
        """No rules means everything is allowed."""
        assert is_path_allowed("/anything", RobotsRules()) is True


class TestParseRobotsText:
    """Tests for parse_robots_text function."""

    def test_collects_rules_for_star_agent(self):
        """Allow, Disallow and Crawl-delay are read from the * group."""
        rules = parse_robots_text(
            "User-agent: *\n"
            "Disallow: /admin\n"
            "Allow: /admin/public\n"
            "Crawl-delay: 5\n"
        )
        assert rules.disallowed == ["/admin"]
        assert rules.allowed == ["/admin/public"]
        assert rules.crawl_delay == 5.0

    def test_ignores_groups_for_other_agents(self):
        """Rules addressed to a named non-bot agent do not apply."""
        rules = parse_robots_text("User-agent: Slurp-Reader\nDisallow: /secret\n")
        assert rules.disallowed == []

    def test_bot_agents_apply(self):
        """Any agent containing 'bot' is treated as addressing this crawler."""
        rules = parse_robots_text("User-agent: Googlebot\nDisallow: /private\n")
        assert rules.disallowed == ["/private"]

    def test_sitemaps_collected_regardless_of_group(self):
        """Sitemap lines are global."""
        rules = parse_robots_text(
            "User-agent: Other\n"
            "Disallow: /x\n"
            "Sitemap: https://x.example/sitemap.xml\n"
        )
        assert rules.sitemaps == ["https://x.example/sitemap.xml"]

    def test_empty_disallow_and_comments_ignored(self):
        """Empty Disallow allows everything and comments are stripped."""
        rules = parse_robots_text("# hello\nUser-agent: *\nDisallow:   # nothing\n")
        assert rules.disallowed == []

    def test_malformed_crawl_delay_ignored(self):
        """A non-numeric Crawl-delay is skipped."""
        rules = parse_robots_text("User-agent: *\nCrawl-delay: soon\n")
        assert rules.crawl_delay is None


class TestParseSitemapDocument:
    """Tests for parse_sitemap_document function."""

    def test_urlset_entries(self):
        """url entries carry loc, lastmod and priority."""
        xml = (
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
            '<url><loc>https://x.example/a</loc><lastmod>2024-01-01</lastmod><priority>0.8</priority></url>'
            '<url><loc>https://x.example/b</loc></url>'
            '</urlset>'
        )
        children, entries = parse_sitemap_document(xml)
        assert children == []
        assert [e.url for e in entries] == ["https://x.example/a", "https://x.example/b"]
        assert entries[0].lastmod == "2024-01-01"
        assert entries[0].priority == 0.8
        assert entries[1].priority is None

    def test_sitemap_index_children(self):
        """A sitemap index yields child sitemap URLs only."""
        children, entries = parse_sitemap_document(_index("https://x.example/s1.xml"))
        assert children == ["https://x.example/s1.xml"]
        assert entries == []

    def test_malformed_xml_raises_parse_error(self):
        """Malformed XML is reported to the caller as ParseError."""
        with pytest.raises(ET.ParseError):
            parse_sitemap_document("<urlset><url>")


class TestPoliteFetcherSitemaps:
    """Tests for PoliteFetcher.parse_sitemap and parse_robots."""

    @pytest.mark.asyncio
    async def test_index_with_seven_children_reads_five(self):
        """At most five child sitemaps are followed."""
        children = [f"https://x.example/sitemap-{i}.xml" for i in range(7)]
        documents = {"https://x.example/sitemap.xml": _index(*children)}
        for i, child in enumerate(children):
            documents[child] = _urlset(f"https://x.example/page-{i}")
        fetcher = _fetcher_serving(documents)

        entries = await fetcher.parse_sitemap("https://x.example/sitemap.xml")

        assert [e.url for e in entries] == [f"https://x.example/page-{i}" for i in range(5)]
        assert fetcher.fetch_polite.await_count == 6

    @pytest.mark.asyncio
    async def test_unreachable_sitemap_returns_empty(self):
        """A 404 sitemap yields no entries."""
        fetcher = _fetcher_serving({})
        assert await fetcher.parse_sitemap("https://x.example/sitemap.xml") == []

    @pytest.mark.asyncio
    async def test_malformed_sitemap_returns_empty(self):
        """Malformed XML yields no entries instead of raising."""
        fetcher = _fetcher_serving({"https://x.example/sitemap.xml": "<urlset><url>"})
        assert await fetcher.parse_sitemap("https://x.example/sitemap.xml") == []

    @pytest.mark.asyncio
    async def test_robots_fetch_failure_fails_open(self):
        """An unreachable robots.txt produces empty rules."""
        fetcher = _fetcher_serving({})
        rules = await fetcher.parse_robots("x.example")
        assert rules.disallowed == []
        assert rules.crawl_delay is None
        fetcher.fetch_polite.assert_awaited_once()
        assert fetcher.fetch_polite.await_args.args[0] == "https://x.example/robots.txt"

    @pytest.mark.asyncio
    async def test_robots_parsed_when_available(self):
        """A served robots.txt is parsed."""
        fetcher = _fetcher_serving({"https://x.example/robots.txt": "User-agent: *\nDisallow: /private\n"})
        rules = await fetcher.parse_robots("x.example")
        assert rules.disallowed == ["/private"]


class TestFetchResult:
    """Tests for FetchResult.ok."""

    def test_ok_only_for_2xx_without_error(self):
        """ok requires a 2xx status and no error."""
        assert FetchResult(url="u", status=200).ok is True
        assert FetchResult(url="u", status=404, error="HTTP 404").ok is False
        assert FetchResult(url="u", error="Timeout").ok is False
