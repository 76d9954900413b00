"""
Scaling Policy
根据目标文章数推导搜索规模
"""
from dataclasses import dataclass


MIN_SCAN_CEILING = 1000
MAX_SCAN_CEILING = 100000


@dataclass(frozen=True)
class ScalingPolicy:
    keyword_count: int
    account_limit: int
    article_limit: int

    @classmethod
    def for_target(cls, target_count: int) -> "ScalingPolicy":
        if target_count <= 50:
            return cls(keyword_count=10, account_limit=20, article_limit=20)
        if target_count <= 200:
            return cls(keyword_count=15, account_limit=30, article_limit=30)
        return cls(keyword_count=20, account_limit=50, article_limit=50)


def scan_ceiling(target_count: int) -> int:
    """扫描上限 = clamp(target * 50, 1000, 100000)"""
    return max(MIN_SCAN_CEILING, min(target_count * 50, MAX_SCAN_CEILING))
