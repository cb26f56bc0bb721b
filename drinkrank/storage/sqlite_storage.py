import asyncio
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple, TypeVar

from drinkrank.core.errors import ConsistencyFault
from drinkrank.core.models import Item, ItemPublicScore, PersonalRating, PreferenceRecord, Tier
from drinkrank.utils.logger import get_logger

logger = get_logger(__name__)

R = TypeVar('R')


def _now() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())


class SQLiteStorage:
    """SQLite个人评分数据读写操作封装"""

    def __init__(
        self,
        db_path: str,
        items_table: str = "items",
        ratings_table: str = "personal_ratings",
        preferences_table: str = "preference_records",
        scores_table: str = "item_public_scores",
        lock_retries: int = 5,
    ) -> None:
        self.db_path = Path(db_path)
        self.items_table = self._sanitize_identifier(items_table)
        self.ratings_table = self._sanitize_identifier(ratings_table)
        self.preferences_table = self._sanitize_identifier(preferences_table)
        self.scores_table = self._sanitize_identifier(scores_table)
        self.lock_retries = lock_retries

        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    @staticmethod
    def _sanitize_identifier(value: str) -> str:
        if not value or not value.replace("_", "").isalnum():
            raise ValueError(f"非法的SQLite标识符: {value}")
        return value

    def _connect(self) -> sqlite3.Connection:
        # 事务由 _transaction 显式管理
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        # 启用 WAL 模式以支持更好的并发读写
        conn.execute("PRAGMA journal_mode=WAL")
        # 设置繁忙超时（毫秒）
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """写事务：BEGIN IMMEDIATE 立即获取写锁，保证读-改-写期间不被其他写者插入"""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _retry_on_lock(self, operation: Callable[[], R]) -> R:
        for attempt in range(self.lock_retries):
            try:
                return operation()
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e) and attempt < self.lock_retries - 1:
                    # 指数退避重试
                    wait_time = 0.1 * (2 ** attempt)
                    logger.warning(f"数据库被锁定，{wait_time:.1f}s 后重试 ({attempt + 1}/{self.lock_retries})")
                    time.sleep(wait_time)
                    continue
                raise
        raise RuntimeError("lock_retries 必须为正整数")

    def _ensure_tables(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.items_table} (
                    item_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category TEXT,
                    created_at TEXT
                );
                """
            )

            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.ratings_table} (
                    user_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    tier TEXT NOT NULL CHECK (tier IN ('loved', 'liked', 'disliked')),
                    rating REAL NOT NULL CHECK (rating >= 1.0 AND rating <= 10.0),
                    comparisons INTEGER NOT NULL DEFAULT 0 CHECK (comparisons >= 0),
                    created_at TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (user_id, item_id)
                );
                """
            )

            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.preferences_table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    preferred_item_id TEXT NOT NULL,
                    rejected_item_id TEXT NOT NULL,
                    tier TEXT NOT NULL,
                    preferred_rating_before REAL,
                    preferred_rating_after REAL,
                    rejected_rating_before REAL,
                    rejected_rating_after REAL,
                    created_at TEXT NOT NULL,
                    CHECK (preferred_item_id <> rejected_item_id)
                );
                """
            )

            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.scores_table} (
                    item_id TEXT PRIMARY KEY,
                    average_rating REAL,
                    total_ratings INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT
                );
                """
            )

            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self.ratings_table}_tier
                ON {self.ratings_table} (user_id, tier);
                """
            )
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self.ratings_table}_item
                ON {self.ratings_table} (item_id);
                """
            )
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self.preferences_table}_user
                ON {self.preferences_table} (user_id);
                """
            )

    @staticmethod
    def _row_to_rating(row: sqlite3.Row) -> PersonalRating:
        return PersonalRating(
            user_id=row["user_id"],
            item_id=row["item_id"],
            tier=Tier(row["tier"]),
            rating=row["rating"],
            comparisons=row["comparisons"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> PreferenceRecord:
        return PreferenceRecord(
            record_id=row["id"],
            user_id=row["user_id"],
            preferred_item_id=row["preferred_item_id"],
            rejected_item_id=row["rejected_item_id"],
            tier=Tier(row["tier"]),
            timestamp=row["created_at"],
            preferred_rating_before=row["preferred_rating_before"],
            preferred_rating_after=row["preferred_rating_after"],
            rejected_rating_before=row["rejected_rating_before"],
            rejected_rating_after=row["rejected_rating_after"],
        )

    # -------------------------------------------------------------------------
    # 饮品目录
    # -------------------------------------------------------------------------

    def save_item(self, item: Item) -> None:
        def _save():
            with self._transaction() as conn:
                conn.execute(
                    f"""
                    INSERT INTO {self.items_table} (item_id, name, category, created_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(item_id) DO UPDATE SET
                        name=excluded.name,
                        category=excluded.category;
                    """,
                    (item.item_id, item.name, item.category, _now()),
                )

        self._retry_on_lock(_save)

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT item_id, name, category FROM {self.items_table} WHERE item_id = ? LIMIT 1;",
                (item_id,),
            ).fetchone()
        if not row:
            return None
        return Item(item_id=row["item_id"], name=row["name"], category=row["category"])

    def item_exists(self, item_id: str) -> bool:
        return self.get_item(item_id) is not None

    def list_items(self) -> List[Item]:
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT item_id, name, category FROM {self.items_table} ORDER BY item_id;"
            ).fetchall()
        return [Item(item_id=row["item_id"], name=row["name"], category=row["category"]) for row in rows]

    # -------------------------------------------------------------------------
    # 个人评分
    # -------------------------------------------------------------------------

    def get_rating(self, user_id: str, item_id: str) -> Optional[PersonalRating]:
        with self._read() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM {self.ratings_table}
                WHERE user_id = ? AND item_id = ?
                LIMIT 1;
                """,
                (user_id, item_id),
            ).fetchone()
        if not row:
            return None
        return self._row_to_rating(row)

    async def aget_rating(self, user_id: str, item_id: str) -> Optional[PersonalRating]:
        return await asyncio.to_thread(self.get_rating, user_id, item_id)

    def list_ratings(self, user_id: str, tier: Optional[Tier] = None) -> List[PersonalRating]:
        """获取用户的评分记录，按层级、评分降序排列"""
        query = f"SELECT * FROM {self.ratings_table} WHERE user_id = ?"
        params: Tuple = (user_id,)
        if tier is not None:
            query += " AND tier = ?"
            params = (user_id, Tier.parse(tier).value)
        query += """
            ORDER BY CASE tier WHEN 'loved' THEN 0 WHEN 'liked' THEN 1 ELSE 2 END,
                     rating DESC, item_id;
        """
        with self._read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_rating(row) for row in rows]

    async def alist_ratings(self, user_id: str, tier: Optional[Tier] = None) -> List[PersonalRating]:
        return await asyncio.to_thread(self.list_ratings, user_id, tier)

    def count_tier(self, user_id: str, tier: Tier) -> int:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM {self.ratings_table} WHERE user_id = ? AND tier = ?;",
                (user_id, Tier.parse(tier).value),
            ).fetchone()
        return int(row["n"])

    def insert_rating_if_absent(
        self,
        user_id: str,
        item_id: str,
        tier: Tier,
        initial_rating: Callable[[int], float],
    ) -> Tuple[PersonalRating, bool]:
        """
        不存在时创建评分记录，存在时原样返回

        Args:
            initial_rating: 根据该层级已有饮品数量计算初始评分的函数

        Returns:
            (评分记录, 是否为新建)
        """
        tier = Tier.parse(tier)

        def _insert() -> bool:
            with self._transaction() as conn:
                existing = conn.execute(
                    f"SELECT 1 FROM {self.ratings_table} WHERE user_id = ? AND item_id = ?;",
                    (user_id, item_id),
                ).fetchone()
                if existing:
                    return False

                tier_count = conn.execute(
                    f"SELECT COUNT(*) AS n FROM {self.ratings_table} WHERE user_id = ? AND tier = ?;",
                    (user_id, tier.value),
                ).fetchone()["n"]
                now = _now()
                cursor = conn.execute(
                    f"""
                    INSERT INTO {self.ratings_table}
                        (user_id, item_id, tier, rating, comparisons, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 0, ?, ?)
                    ON CONFLICT(user_id, item_id) DO NOTHING;
                    """,
                    (user_id, item_id, tier.value, initial_rating(int(tier_count)), now, now),
                )
                return cursor.rowcount == 1

        created = self._retry_on_lock(_insert)
        return self.get_rating(user_id, item_id), created

    def get_item_ratings(self, item_id: str) -> List[float]:
        """一次查询读取某饮品在所有用户下的个人评分（一致快照）"""
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT rating FROM {self.ratings_table} WHERE item_id = ?;",
                (item_id,),
            ).fetchall()
        return [row["rating"] for row in rows]

    def apply_preference(
        self,
        winner: PersonalRating,
        loser: PersonalRating,
        new_winner_rating: float,
        new_loser_rating: float,
    ) -> PreferenceRecord:
        """
        原子地写回两条评分并追加偏好记录

        以读取时的 comparisons 作为版本号做比较并交换，任一行已被其他写者修改时
        整个事务回滚并抛出 ConsistencyFault，由调用方重新读取后重试。
        """
        now = _now()

        def _apply() -> int:
            with self._transaction() as conn:
                for entry, new_rating in ((winner, new_winner_rating), (loser, new_loser_rating)):
                    cursor = conn.execute(
                        f"""
                        UPDATE {self.ratings_table}
                        SET rating = ?, comparisons = comparisons + 1, updated_at = ?
                        WHERE user_id = ? AND item_id = ? AND comparisons = ?;
                        """,
                        (new_rating, now, entry.user_id, entry.item_id, entry.comparisons),
                    )
                    if cursor.rowcount != 1:
                        raise ConsistencyFault(
                            f"评分记录已被并发修改: user={entry.user_id}, item={entry.item_id}"
                        )

                cursor = conn.execute(
                    f"""
                    INSERT INTO {self.preferences_table}
                        (user_id, preferred_item_id, rejected_item_id, tier,
                         preferred_rating_before, preferred_rating_after,
                         rejected_rating_before, rejected_rating_after, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        winner.user_id,
                        winner.item_id,
                        loser.item_id,
                        winner.tier.value,
                        winner.rating,
                        new_winner_rating,
                        loser.rating,
                        new_loser_rating,
                        now,
                    ),
                )
                return cursor.lastrowid

        record_id = self._retry_on_lock(_apply)
        return PreferenceRecord(
            record_id=record_id,
            user_id=winner.user_id,
            preferred_item_id=winner.item_id,
            rejected_item_id=loser.item_id,
            tier=winner.tier,
            timestamp=now,
            preferred_rating_before=winner.rating,
            preferred_rating_after=new_winner_rating,
            rejected_rating_before=loser.rating,
            rejected_rating_after=new_loser_rating,
        )

    # -------------------------------------------------------------------------
    # 偏好记录
    # -------------------------------------------------------------------------

    def list_preferences(
        self,
        user_id: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> List[PreferenceRecord]:
        clauses = []
        params: List[str] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if item_id is not None:
            clauses.append("(preferred_item_id = ? OR rejected_item_id = ?)")
            params.extend([item_id, item_id])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT * FROM {self.preferences_table} {where} ORDER BY id;",
                params,
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count_preferences(self, user_id: Optional[str] = None) -> int:
        with self._read() as conn:
            if user_id is None:
                row = conn.execute(f"SELECT COUNT(*) AS n FROM {self.preferences_table};").fetchone()
            else:
                row = conn.execute(
                    f"SELECT COUNT(*) AS n FROM {self.preferences_table} WHERE user_id = ?;",
                    (user_id,),
                ).fetchone()
        return int(row["n"])

    # -------------------------------------------------------------------------
    # 公共评分
    # -------------------------------------------------------------------------

    def save_public_score(self, score: ItemPublicScore) -> None:
        def _save():
            with self._transaction() as conn:
                conn.execute(
                    f"""
                    INSERT INTO {self.scores_table} (item_id, average_rating, total_ratings, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(item_id) DO UPDATE SET
                        average_rating=excluded.average_rating,
                        total_ratings=excluded.total_ratings,
                        updated_at=excluded.updated_at;
                    """,
                    (score.item_id, score.average_rating, score.total_ratings, score.updated_at or _now()),
                )

        self._retry_on_lock(_save)

    def get_public_score(self, item_id: str) -> Optional[ItemPublicScore]:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT * FROM {self.scores_table} WHERE item_id = ? LIMIT 1;",
                (item_id,),
            ).fetchone()
        if not row:
            return None
        return ItemPublicScore(
            item_id=row["item_id"],
            average_rating=row["average_rating"],
            total_ratings=row["total_ratings"],
            updated_at=row["updated_at"],
        )
