"""
Retrieval gate: decide whether a user turn warrants a knowledge lookup.

Cheap string rules only, no model call. Ambiguous queries are retrieved
rather than skipped.
"""

import logging
import re
from dataclasses import dataclass

from tripmate.core.config import MIN_QUERY_LENGTH

logger = logging.getLogger(__name__)

GREETING_PATTERNS: list[re.Pattern] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^你好",
        r"^hi$",
        r"^hello$",
        r"^嗨",
        r"^早上好",
        r"^晚上好",
        r"^谢谢",
        r"^再见",
        r"^拜拜",
        r"^好的",
        r"^ok$",
        r"^明白了",
        r"^知道了",
    )
]

TRAVEL_KEYWORDS: tuple[str, ...] = (
    "旅游", "旅行", "景点", "玩", "去", "推荐", "攻略", "住", "吃", "美食", "酒店",
    "好玩", "值得", "门票", "开放", "时间", "几点", "怎么去", "交通", "行程", "规划",
)

GATE_CITIES: tuple[str, ...] = (
    "北京", "上海", "广州", "深圳", "杭州", "成都", "重庆", "西安", "南京",
    "苏州", "厦门", "三亚", "大理", "丽江", "青岛", "桂林", "张家界", "黄山",
)

# Order matters: extract_city_from_query returns the first entry found in the query
KNOWN_CITIES: tuple[str, ...] = (
    "北京", "上海", "广州", "深圳", "杭州", "成都", "重庆", "西安", "南京", "苏州",
    "无锡", "常州", "厦门", "福州", "三亚", "海口", "大理", "丽江", "昆明", "青岛",
    "济南", "桂林", "南宁", "张家界", "长沙", "武汉", "黄山", "合肥", "天津", "沈阳",
    "大连", "哈尔滨", "长春", "郑州", "洛阳", "拉萨", "兰州", "敦煌", "乌鲁木齐", "银川",
    "西宁", "贵阳",
)


@dataclass
class GateDecision:
    retrieve: bool
    reason: str


def classify_query(query: str) -> GateDecision:
    """Apply the gate rules in order and report which one decided."""
    if len(query) < MIN_QUERY_LENGTH:
        return GateDecision(False, "too_short")
    stripped = query.strip()
    if any(p.search(stripped) for p in GREETING_PATTERNS):
        return GateDecision(False, "greeting")
    if any(k in query for k in TRAVEL_KEYWORDS):
        return GateDecision(True, "travel_keyword")
    if any(c in query for c in GATE_CITIES):
        return GateDecision(True, "city")
    return GateDecision(True, "default")


def should_retrieve(query: str) -> bool:
    decision = classify_query(query)
    logger.info("[retrieval_gate:should_retrieve] query=%r retrieve=%s reason=%s",
                query[:80], decision.retrieve, decision.reason)
    return decision.retrieve


def extract_city_from_query(query: str) -> str | None:
    """First known city (in list order, not query order) mentioned in the query."""
    for city in KNOWN_CITIES:
        if city in query:
            return city
    return None
