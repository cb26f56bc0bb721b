"""
公共评分聚合器
每次都对所有用户的个人评分做完整归约，不做增量合并
"""

import asyncio
import threading
import time
from typing import Optional

import numpy as np

from drinkrank.core.models import ItemPublicScore
from drinkrank.storage.sqlite_storage import SQLiteStorage
from drinkrank.utils.logger import get_logger

logger = get_logger(__name__)


class GlobalAggregator:
    """公共评分聚合器: 同步刷新，或在后台队列中延迟刷新"""

    def __init__(
        self,
        storage: SQLiteStorage,
        queue_max_size: int = 10000,
    ):
        self.storage = storage
        self.queue_max_size = queue_max_size

        # 延迟刷新队列相关
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker_task: Optional[asyncio.Task] = None
        self._is_running = False
        self._count_lock = threading.Lock()
        self.refreshed_count = 0

    @property
    def is_running(self) -> bool:
        return self._is_running

    def refresh(self, item_id: str) -> Optional[ItemPublicScore]:
        """重新计算饮品的公共评分；没有任何用户评分时不写入，返回 None"""
        ratings = self.storage.get_item_ratings(item_id)
        if not ratings:
            logger.debug(f"饮品 {item_id} 暂无用户评分，跳过公共评分计算")
            return None

        score = ItemPublicScore(
            item_id=item_id,
            average_rating=float(np.mean(ratings)),
            total_ratings=len(ratings),
            updated_at=time.strftime("%Y-%m-%d %H:%M:%S", time.localtime()),
        )
        self.storage.save_public_score(score)
        # refresh 可能同时在调用方线程与 to_thread 工作线程中执行
        with self._count_lock:
            self.refreshed_count += 1
        logger.info(
            f"已刷新公共评分: {item_id} -> {score.average_rating:.2f} ({score.total_ratings} 位用户)"
        )
        return score

    def get(self, item_id: str) -> Optional[ItemPublicScore]:
        """获取公共评分，未被任何用户评分的饮品返回 None（而非 0 分）"""
        score = self.storage.get_public_score(item_id)
        if score is None or not score.has_score:
            return None
        return score

    def schedule_refresh(self, item_id: str) -> None:
        """后台队列运行时投递刷新任务，否则立即刷新（可在任意线程调用）"""
        if self._is_running and self._loop is not None:
            self._loop.call_soon_threadsafe(self._enqueue, item_id)
        else:
            self.refresh(item_id)

    def _enqueue(self, item_id: str) -> None:
        if not self._is_running:
            self.refresh(item_id)
            return
        try:
            self._queue.put_nowait(item_id)
        except asyncio.QueueFull:
            logger.warning(f"刷新队列已满，直接刷新: {item_id}")
            self.refresh(item_id)

    async def start(self):
        """启动后台刷新任务"""
        if self._is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.queue_max_size)
        self._is_running = True
        self._worker_task = asyncio.create_task(self._worker_loop())
        logger.info(f"公共评分刷新队列已启动 (队列大小: {self._queue.maxsize})")

    async def drain(self):
        """等待队列中已投递的刷新全部完成"""
        # 让 call_soon_threadsafe 投递的回调先执行
        await asyncio.sleep(0)
        if self._queue is not None:
            await self._queue.join()

    async def stop(self):
        """停止后台刷新任务（先处理完队列中的剩余任务）"""
        if not self._is_running:
            return
        await asyncio.sleep(0)
        self._is_running = False

        if not self._queue.empty():
            logger.info(f"等待刷新队列清空... (剩余: {self._queue.qsize()})")
        await self._queue.join()
        await self._queue.put(None)

        if self._worker_task:
            await self._worker_task
        logger.info("公共评分刷新队列已停止")

    async def _worker_loop(self):
        """后台刷新循环，收到 None 停止信号后退出"""
        processed_count = 0
        while True:
            item_id = await self._queue.get()
            try:
                if item_id is None:
                    break
                await asyncio.to_thread(self.refresh, item_id)
                processed_count += 1
            except Exception as e:
                logger.error(f"刷新公共评分失败: {item_id}, 错误: {e}")
            finally:
                self._queue.task_done()

        logger.info(f"刷新循环结束，共处理 {processed_count} 项")
