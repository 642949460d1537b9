"""
Tests for retrieve_knowledge and context formatting, using the in-memory FakeIndex.
"""

import pytest

from conftest import FakeIndex, make_hit
from tripmate.core.cancellation import CancellationToken
from tripmate.core.errors import OperationCancelled
from tripmate.schemas.knowledge import RetrievalResult, RetrievalSource
from tripmate.services.retrieval_service import (
    BLOCK_SEPARATOR,
    NO_RESULTS_TEXT,
    UNAVAILABLE_TEXT,
    format_results_as_context,
    retrieve_knowledge,
)


def _result(name: str, city: str, similarity: float, content: str, rating: float | None = None) -> RetrievalResult:
    return RetrievalResult(content=content, similarity=similarity,
                           source=RetrievalSource(name=name, city=city, rating=rating))


class TestFormatResultsAsContext:
    def test_empty_results(self) -> None:
        assert format_results_as_context([]) == NO_RESULTS_TEXT

    def test_blocks_are_numbered_and_separated(self) -> None:
        text = format_results_as_context([
            _result("亚龙湾", "三亚", 0.876, "海水清澈。", rating=4.7),
            _result("天涯海角", "三亚", 0.7, "著名景点。"),
        ])
        first, second = text.split(BLOCK_SEPARATOR)
        assert first == "### Reference 1: 亚龙湾 (三亚)\n> Relevance: 88% | Rating: 4.7\n\n海水清澈。"
        assert second.startswith("### Reference 2: 天涯海角 (三亚)\n> Relevance: 70% | Rating: n/a")

    def test_long_content_is_truncated(self) -> None:
        text = format_results_as_context([_result("A", "B", 0.9, "x" * 2500)])
        body = text.split("\n\n", 1)[1]
        assert body == "x" * 2000 + "..."


@pytest.mark.asyncio
async def test_sanya_query_returns_formatted_references() -> None:
    index = FakeIndex([
        make_hit("亚龙湾", "三亚", 0.82, rating=4.7, tags="海滩,潜水"),
        make_hit("蜈支洲岛", "三亚", 0.78),
    ])

    ctx = await retrieve_knowledge("三亚有什么好玩的", index, city="三亚")

    assert ctx.has_results is True
    assert [r.source.name for r in ctx.results] == ["亚龙湾", "蜈支洲岛"]
    assert ctx.results[0].source.tags == ["海滩", "潜水"]
    assert ctx.formatted_context.startswith("### Reference 1: 亚龙湾 (三亚)")
    assert index.searches == [{"query": "三亚有什么好玩的", "top_k": 3, "threshold": 0.65, "city": "三亚"}]


@pytest.mark.asyncio
async def test_threshold_and_top_k_are_enforced_again() -> None:
    index = FakeIndex([
        make_hit("low", "成都", 0.5),
        make_hit("b", "成都", 0.7),
        make_hit("a", "成都", 0.9),
        make_hit("c", "成都", 0.66),
    ])

    ctx = await retrieve_knowledge("成都美食", index, top_k=2, threshold=0.65)

    assert [r.source.name for r in ctx.results] == ["a", "b"]


@pytest.mark.asyncio
async def test_no_hits_gives_no_results_text() -> None:
    ctx = await retrieve_knowledge("北京故宫门票", FakeIndex([]))
    assert ctx.has_results is False
    assert ctx.formatted_context == NO_RESULTS_TEXT


@pytest.mark.asyncio
async def test_index_failure_degrades_to_unavailable() -> None:
    ctx = await retrieve_knowledge("北京故宫门票", FakeIndex(error=RuntimeError("milvus down")))
    assert ctx.has_results is False
    assert ctx.results == []
    assert ctx.formatted_context == UNAVAILABLE_TEXT


@pytest.mark.asyncio
async def test_cancelled_token_stops_after_search() -> None:
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        await retrieve_knowledge("北京故宫门票", FakeIndex([make_hit("故宫", "北京", 0.9)]), token=token)
