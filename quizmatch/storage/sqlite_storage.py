import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set

from quizmatch.core.exceptions import PersistenceFailure
from quizmatch.core.models import (
    MATCHMAKING_STRATEGY_KIND,
    RATING_SYSTEM_KIND,
    Attempt,
    LearnerRating,
    QuestionList,
    QuestionRating,
    RatingSystemConfigEntry,
)
from quizmatch.storage.base import AssessmentStorage
from quizmatch.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TABLES: Dict[str, str] = {
    'question_lists_table': 'question_lists',
    'questions_table': 'questions',
    'question_bank_table': 'question_bank',
    'learners_table': 'learners',
    'attempts_table': 'attempts',
    'rating_systems_table': 'rating_systems',
    'matchmaking_strategies_table': 'matchmaking_strategies',
}


class SQLiteStorage(AssessmentStorage):
    """SQLite评分数据读写操作封装"""

    def __init__(self, db_path: str, tables: Optional[Dict[str, str]] = None) -> None:
        self.db_path = Path(db_path)
        names = {**DEFAULT_TABLES, **(tables or {})}
        self.question_lists_table = self._sanitize_identifier(names['question_lists_table'])
        self.questions_table = self._sanitize_identifier(names['questions_table'])
        self.question_bank_table = self._sanitize_identifier(names['question_bank_table'])
        self.learners_table = self._sanitize_identifier(names['learners_table'])
        self.attempts_table = self._sanitize_identifier(names['attempts_table'])
        self._config_tables = {
            RATING_SYSTEM_KIND: self._sanitize_identifier(names['rating_systems_table']),
            MATCHMAKING_STRATEGY_KIND: self._sanitize_identifier(names['matchmaking_strategies_table']),
        }

        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    @staticmethod
    def _sanitize_identifier(value: str) -> str:
        if not value or not value.replace("_", "").isalnum():
            raise ValueError(f"非法的SQLite标识符: {value}")
        return value

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        # 启用 WAL 模式以支持更好的并发读写
        conn.execute("PRAGMA journal_mode=WAL")
        # 设置繁忙超时（毫秒）
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """单次事务: 成功提交、失败回滚，驱动异常统一转为 PersistenceFailure"""
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            logger.error(f"连接数据库失败 ({action}): {e}")
            raise PersistenceFailure(f"{action}失败: {e}")
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"数据库操作失败 ({action}): {e}")
            raise PersistenceFailure(f"{action}失败: {e}")
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._transaction("初始化数据表") as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.question_lists_table} (
                    id INTEGER PRIMARY KEY,
                    level_ratings_json TEXT NOT NULL,
                    default_question_rating REAL NOT NULL
                );
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.questions_table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    question_id INTEGER NOT NULL,
                    question_list_id INTEGER NOT NULL,
                    rating REAL NOT NULL,
                    UNIQUE(question_list_id, question_id)
                );
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.question_bank_table} (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    questiontext TEXT NOT NULL
                );
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.learners_table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    assessment_id INTEGER NOT NULL,
                    rating REAL NOT NULL,
                    highest_level INTEGER NOT NULL DEFAULT 0,
                    UNIQUE(assessment_id, user_id)
                );
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.attempts_table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    assessment_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    question_id INTEGER NOT NULL,
                    answered INTEGER NOT NULL DEFAULT 0,
                    correct INTEGER,
                    time_created TEXT,
                    time_answered TEXT
                );
                """
            )
            for table in self._config_tables.values():
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        assessment_id INTEGER NOT NULL UNIQUE,
                        rating_system TEXT NOT NULL,
                        configuration TEXT NOT NULL DEFAULT ''
                    );
                    """
                )

            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self.questions_table}_list
                ON {self.questions_table} (question_list_id);
                """
            )
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self.attempts_table}_user
                ON {self.attempts_table} (assessment_id, user_id);
                """
            )

    # ==================== 题目池 ====================

    def _question_select(self) -> str:
        return (
            f"SELECT q.id, q.question_id, q.question_list_id, q.rating, "
            f"b.name AS bank_name, b.questiontext AS bank_text "
            f"FROM {self.questions_table} q "
            f"LEFT JOIN {self.question_bank_table} b ON b.id = q.question_id"
        )

    @staticmethod
    def _row_to_question(row: sqlite3.Row) -> QuestionRating:
        question = QuestionRating(
            id=row['id'],
            question_id=row['question_id'],
            question_list_id=row['question_list_id'],
            rating=row['rating'],
        )
        bank_entry = None
        if row['bank_name'] is not None:
            bank_entry = {'name': row['bank_name'], 'text': row['bank_text']}
        return question.with_bank_entry(bank_entry)

    def fetch_questions(
        self,
        question_list_id: int,
        target_rating: float,
        limit: int,
        excluded_question_ids: Iterable[int] = ()
    ) -> List[QuestionRating]:
        excluded = sorted(set(excluded_question_ids))
        sql = self._question_select() + " WHERE q.question_list_id = ?"
        params: list = [question_list_id]
        if excluded:
            placeholders = ", ".join("?" for _ in excluded)
            sql += f" AND q.question_id NOT IN ({placeholders})"
            params.extend(excluded)
        sql += " ORDER BY ABS(q.rating - ?), q.id LIMIT ?"
        params.extend([float(target_rating), int(limit)])

        with self._transaction("查询候选题目") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_question(row) for row in rows]

    def list_questions(self, question_list_id: int) -> List[QuestionRating]:
        sql = self._question_select() + " WHERE q.question_list_id = ? ORDER BY q.id"
        with self._transaction("查询题目列表") as conn:
            rows = conn.execute(sql, (question_list_id,)).fetchall()
        return [self._row_to_question(row) for row in rows]

    def get_question(self, question_list_id: int, question_id: int) -> Optional[QuestionRating]:
        sql = self._question_select() + " WHERE q.question_list_id = ? AND q.question_id = ?"
        with self._transaction("查询题目") as conn:
            row = conn.execute(sql, (question_list_id, question_id)).fetchone()
        return self._row_to_question(row) if row else None

    def add_question(self, question: QuestionRating) -> QuestionRating:
        with self._transaction("新增题目") as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO {self.questions_table} (question_id, question_list_id, rating)
                VALUES (?, ?, ?)
                """,
                (question.question_id, question.question_list_id, float(question.rating)),
            )
            row_id = cursor.lastrowid
        stored = self.get_question(question.question_list_id, question.question_id)
        logger.debug(f"已新增题目 {question.question_id} (行 {row_id})")
        return stored

    def update_question_rating(self, question_list_id: int, question_id: int, rating: float) -> None:
        with self._transaction("更新题目评分") as conn:
            cursor = conn.execute(
                f"""
                UPDATE {self.questions_table} SET rating = ?
                WHERE question_list_id = ? AND question_id = ?
                """,
                (float(rating), question_list_id, question_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceFailure(f"题目 {question_id} 不存在于题目列表 {question_list_id}")

    def get_question_list(self, question_list_id: int) -> Optional[QuestionList]:
        with self._transaction("查询题目列表配置") as conn:
            row = conn.execute(
                f"SELECT * FROM {self.question_lists_table} WHERE id = ?",
                (question_list_id,),
            ).fetchone()
        if not row:
            return None
        return QuestionList(
            id=row['id'],
            level_ratings=[float(v) for v in json.loads(row['level_ratings_json'])],
            default_question_rating=row['default_question_rating'],
        )

    def save_question_list(self, question_list: QuestionList) -> None:
        with self._transaction("保存题目列表配置") as conn:
            conn.execute(
                f"""
                INSERT INTO {self.question_lists_table} (id, level_ratings_json, default_question_rating)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    level_ratings_json = excluded.level_ratings_json,
                    default_question_rating = excluded.default_question_rating
                """,
                (
                    question_list.id,
                    json.dumps([float(v) for v in question_list.level_ratings]),
                    float(question_list.default_question_rating),
                ),
            )

    # ==================== 外部题库 ====================

    def lookup_question_bank(self, question_id: int) -> Optional[dict]:
        with self._transaction("查询题库") as conn:
            row = conn.execute(
                f"SELECT name, questiontext FROM {self.question_bank_table} WHERE id = ?",
                (question_id,),
            ).fetchone()
        if not row:
            return None
        return {'name': row['name'], 'text': row['questiontext']}

    def save_question_bank_entry(self, question_id: int, name: str, text: str) -> None:
        with self._transaction("保存题库条目") as conn:
            conn.execute(
                f"""
                INSERT INTO {self.question_bank_table} (id, name, questiontext)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name, questiontext = excluded.questiontext
                """,
                (question_id, name, text),
            )

    # ==================== 实现选择与配置 ====================

    def get_config_entry(self, kind: str, assessment_id: int) -> Optional[RatingSystemConfigEntry]:
        table = self._config_tables[self._check_kind(kind)]
        with self._transaction("读取配置记录") as conn:
            row = conn.execute(
                f"SELECT id, assessment_id, rating_system, configuration FROM {table} WHERE assessment_id = ?",
                (assessment_id,),
            ).fetchone()
        if not row:
            return None
        return RatingSystemConfigEntry(
            id=row['id'],
            assessment_id=row['assessment_id'],
            rating_system_name=row['rating_system'],
            configuration=row['configuration'] or '',
        )

    def insert_config_entry(self, kind: str, entry: RatingSystemConfigEntry) -> RatingSystemConfigEntry:
        table = self._config_tables[self._check_kind(kind)]
        with self._transaction("写入配置记录") as conn:
            cursor = conn.execute(
                f"INSERT INTO {table} (assessment_id, rating_system, configuration) VALUES (?, ?, ?)",
                (entry.assessment_id, entry.rating_system_name, entry.configuration or ''),
            )
            row_id = cursor.lastrowid
        return RatingSystemConfigEntry(
            id=row_id,
            assessment_id=entry.assessment_id,
            rating_system_name=entry.rating_system_name,
            configuration=entry.configuration or '',
        )

    def update_config_entry(self, kind: str, entry: RatingSystemConfigEntry) -> None:
        table = self._config_tables[self._check_kind(kind)]
        with self._transaction("更新配置记录") as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET rating_system = ?, configuration = ? WHERE assessment_id = ?",
                (entry.rating_system_name, entry.configuration or '', entry.assessment_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceFailure(f"测评 {entry.assessment_id} 的配置记录不存在")

    # ==================== 学习者 ====================

    def get_learner(self, assessment_id: int, user_id: int) -> Optional[LearnerRating]:
        with self._transaction("读取学习者评分") as conn:
            row = conn.execute(
                f"SELECT * FROM {self.learners_table} WHERE assessment_id = ? AND user_id = ?",
                (assessment_id, user_id),
            ).fetchone()
        if not row:
            return None
        return LearnerRating(
            id=row['id'],
            user_id=row['user_id'],
            assessment_id=row['assessment_id'],
            rating=row['rating'],
            highest_level_reached=row['highest_level'],
        )

    def insert_learner(self, learner: LearnerRating) -> LearnerRating:
        with self._transaction("新增学习者") as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO {self.learners_table} (user_id, assessment_id, rating, highest_level)
                VALUES (?, ?, ?, ?)
                """,
                (learner.user_id, learner.assessment_id, float(learner.rating), learner.highest_level_reached),
            )
            row_id = cursor.lastrowid
        return LearnerRating(
            id=row_id,
            user_id=learner.user_id,
            assessment_id=learner.assessment_id,
            rating=learner.rating,
            highest_level_reached=learner.highest_level_reached,
        )

    def update_learner(self, learner: LearnerRating) -> None:
        with self._transaction("更新学习者评分") as conn:
            cursor = conn.execute(
                f"""
                UPDATE {self.learners_table} SET rating = ?, highest_level = ?
                WHERE assessment_id = ? AND user_id = ?
                """,
                (float(learner.rating), learner.highest_level_reached, learner.assessment_id, learner.user_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceFailure(f"学习者 {learner.user_id} 不存在于测评 {learner.assessment_id}")

    # ==================== 作答记录 ====================

    @staticmethod
    def _row_to_attempt(row: sqlite3.Row) -> Attempt:
        return Attempt(
            id=row['id'],
            assessment_id=row['assessment_id'],
            user_id=row['user_id'],
            question_id=row['question_id'],
            answered=bool(row['answered']),
            correct=None if row['correct'] is None else bool(row['correct']),
            time_created=datetime.fromisoformat(row['time_created']) if row['time_created'] else None,
            time_answered=datetime.fromisoformat(row['time_answered']) if row['time_answered'] else None,
        )

    def create_attempt(self, attempt: Attempt) -> Attempt:
        time_created = attempt.time_created or datetime.now()
        with self._transaction("新增作答记录") as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO {self.attempts_table} (assessment_id, user_id, question_id, answered, time_created)
                VALUES (?, ?, ?, 0, ?)
                """,
                (attempt.assessment_id, attempt.user_id, attempt.question_id, time_created.isoformat()),
            )
            row_id = cursor.lastrowid
        return Attempt(
            id=row_id,
            assessment_id=attempt.assessment_id,
            user_id=attempt.user_id,
            question_id=attempt.question_id,
            time_created=time_created,
        )

    def pending_attempt(self, assessment_id: int, user_id: int) -> Optional[Attempt]:
        with self._transaction("查询待作答记录") as conn:
            row = conn.execute(
                f"""
                SELECT * FROM {self.attempts_table}
                WHERE assessment_id = ? AND user_id = ? AND answered = 0
                ORDER BY id DESC LIMIT 1
                """,
                (assessment_id, user_id),
            ).fetchone()
        return self._row_to_attempt(row) if row else None

    def mark_attempt_answered(self, attempt_id: int, correct: bool, answered_at: datetime) -> None:
        with self._transaction("更新作答记录") as conn:
            cursor = conn.execute(
                f"UPDATE {self.attempts_table} SET answered = 1, correct = ?, time_answered = ? WHERE id = ?",
                (1 if correct else 0, answered_at.isoformat(), attempt_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceFailure(f"作答记录 {attempt_id} 不存在")

    def save_attempt_result(
        self,
        attempt_id: int,
        correct: bool,
        answered_at: datetime,
        question: QuestionRating,
        learner: LearnerRating
    ) -> None:
        with self._transaction("保存作答结果") as conn:
            cursor = conn.execute(
                f"""
                UPDATE {self.attempts_table} SET answered = 1, correct = ?, time_answered = ?
                WHERE id = ? AND answered = 0
                """,
                (1 if correct else 0, answered_at.isoformat(), attempt_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceFailure(f"作答记录 {attempt_id} 不存在或已作答")

            cursor = conn.execute(
                f"""
                UPDATE {self.questions_table} SET rating = ?
                WHERE question_list_id = ? AND question_id = ?
                """,
                (float(question.rating), question.question_list_id, question.question_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceFailure(
                    f"题目 {question.question_id} 不存在于题目列表 {question.question_list_id}"
                )

            cursor = conn.execute(
                f"""
                UPDATE {self.learners_table} SET rating = ?, highest_level = ?
                WHERE assessment_id = ? AND user_id = ?
                """,
                (float(learner.rating), learner.highest_level_reached, learner.assessment_id, learner.user_id),
            )
            if cursor.rowcount == 0:
                raise PersistenceFailure(f"学习者 {learner.user_id} 不存在于测评 {learner.assessment_id}")

    def excluded_question_ids(self, assessment_id: int, user_id: int) -> Set[int]:
        with self._transaction("查询排除题目") as conn:
            pending = conn.execute(
                f"""
                SELECT question_id FROM {self.attempts_table}
                WHERE assessment_id = ? AND user_id = ? AND answered = 0
                """,
                (assessment_id, user_id),
            ).fetchall()
            latest = conn.execute(
                f"""
                SELECT question_id FROM {self.attempts_table}
                WHERE assessment_id = ? AND user_id = ? AND answered = 1
                ORDER BY id DESC LIMIT 1
                """,
                (assessment_id, user_id),
            ).fetchone()
        excluded = {row['question_id'] for row in pending}
        if latest:
            excluded.add(latest['question_id'])
        return excluded
