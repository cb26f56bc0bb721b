"""
排名引擎异常定义
所有异常均为单次请求级别，可由调用方修正输入后重试
"""

from typing import Optional


class RankingError(Exception):
    """排名引擎异常基类"""

    def __init__(self, message: str, should_initialize: bool = False):
        super().__init__(message)
        self.message = message
        self.should_initialize = should_initialize


class ValidationError(RankingError):
    """输入校验失败：标识符缺失/非法、层级非法、与自身比较"""


class NotFoundError(RankingError):
    """引用的饮品或用户评分记录不存在，调用方应先执行初始化"""

    def __init__(self, message: str, should_initialize: bool = True):
        super().__init__(message, should_initialize=should_initialize)


class ExhaustedCandidatesError(RankingError):
    """该层级中没有可用的对比对象（用户在该层级只有一个饮品）"""

    def __init__(self, message: str):
        super().__init__(message, should_initialize=True)


class ConsistencyFault(RankingError):
    """同一用户评分记录的并发写入冲突，超过重试次数后抛出"""

    def __init__(self, message: str, attempts: Optional[int] = None):
        super().__init__(message)
        self.attempts = attempts
