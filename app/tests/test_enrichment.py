import asyncio

import httpx

from cancercompanion.enrichment import FirecrawlSearch, InteractionAnalyzer, PerplexityResearch, format_search_context
from cancercompanion.gateway import PrimaryModelGateway
from cancercompanion.schemas import SearchHit
from conftest import FIRECRAWL, PERPLEXITY, PRIMARY, chat_reply, make_settings


def test_firecrawl_maps_hits(upstream):
    upstream.on(
        FIRECRAWL,
        "/v1/search",
        lambda request: httpx.Response(
            200,
            json={"data": [{"title": "Paclitaxel", "url": "https://cancer.gov/p", "description": "Drug info"}]},
        ),
    )
    search = FirecrawlSearch(make_settings(firecrawl_api_key="fc"), transport=upstream.transport)

    hits = asyncio.run(search.search("paclitaxel", limit=3))

    assert hits == [SearchHit(title="Paclitaxel", url="https://cancer.gov/p", description="Drug info")]
    assert upstream.body(upstream.calls[0]) == {"query": "paclitaxel", "limit": 3}
    assert upstream.calls[0].headers["authorization"] == "Bearer fc"


def test_enrichment_failures_degrade_to_empty(upstream):
    upstream.on(FIRECRAWL, "/v1/search", lambda request: httpx.Response(500))
    upstream.on(PERPLEXITY, "/chat/completions", lambda request: httpx.Response(500))
    settings = make_settings(firecrawl_api_key="fc", perplexity_api_key="px")

    hits = asyncio.run(FirecrawlSearch(settings, transport=upstream.transport).search("q", limit=8))
    answer = asyncio.run(PerplexityResearch(settings, transport=upstream.transport).ask("q", system_prompt="s"))

    assert hits == []
    assert answer == ""


def test_unconfigured_enrichment_makes_no_calls(upstream):
    settings = make_settings()

    hits = asyncio.run(FirecrawlSearch(settings, transport=upstream.transport).search("q", limit=3))
    answer = asyncio.run(PerplexityResearch(settings, transport=upstream.transport).ask("q", system_prompt="s"))

    assert (hits, answer) == ([], "")
    assert upstream.calls == []


def test_perplexity_returns_answer_text(upstream):
    upstream.on(PERPLEXITY, "/chat/completions", lambda request: chat_reply("Stay hydrated."))
    research = PerplexityResearch(make_settings(perplexity_api_key="px"), transport=upstream.transport)

    answer = asyncio.run(research.ask("tips?", system_prompt="s"))

    assert answer == "Stay hydrated."
    assert upstream.body(upstream.calls[0])["model"] == "sonar"


def test_interaction_analysis_reads_analysis_field(upstream):
    upstream.on(PRIMARY, "/txgemma/interact", lambda request: httpx.Response(200, json={"analysis": "Low risk."}))
    analyzer = InteractionAnalyzer(PrimaryModelGateway(make_settings(primary_base_url=PRIMARY), transport=upstream.transport))

    assert asyncio.run(analyzer.analyze(["Paclitaxel", "Carboplatin"], "ctx")) == "Low risk."
    assert upstream.body(upstream.calls[0]) == {"drugs": ["Paclitaxel", "Carboplatin"], "context": "ctx"}


def test_interaction_analysis_is_silent_on_failure(upstream):
    upstream.on(PRIMARY, "/txgemma/interact", lambda request: httpx.Response(503))
    analyzer = InteractionAnalyzer(PrimaryModelGateway(make_settings(primary_base_url=PRIMARY), transport=upstream.transport))

    assert asyncio.run(analyzer.analyze(["Paclitaxel"], "ctx")) is None


def test_format_search_context():
    hits = [
        SearchHit(title="A", url="https://a", description="first"),
        SearchHit(title="B", url="https://b", description="second"),
    ]
    assert format_search_context(hits) == "- A\n  URL: https://a\n  first\n\n- B\n  URL: https://b\n  second"
    assert format_search_context([]) == ""
