from __future__ import annotations

import json
import os
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone

from merge_preview.core.config import settings
from merge_preview.models.branch import MergeOutcome


@dataclass(frozen=True)
class MergeHistoryEntry:
    id: int
    repository: str
    source_branch: str
    target_branch: str
    squash: bool
    outcome: str
    before_sha: str | None
    after_sha: str | None
    conflicted_files: list[str]
    summary: str
    merged_at: str


class MergeHistoryService:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def init_db(self) -> None:
        os.makedirs(os.path.dirname(self._db_path), exist_ok=True)
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS merge_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repository TEXT NOT NULL,
                    source_branch TEXT NOT NULL,
                    target_branch TEXT NOT NULL,
                    squash INTEGER NOT NULL,
                    outcome TEXT NOT NULL,
                    before_sha TEXT,
                    after_sha TEXT,
                    conflicted_files TEXT NOT NULL,
                    summary TEXT NOT NULL,
                    merged_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_merge_history_repository
                ON merge_history (repository, id)
                """
            )
            conn.commit()

    def record_merge(
        self,
        repository: str,
        outcome: MergeOutcome,
        squash: bool,
        merged_at: str | None = None,
    ) -> MergeHistoryEntry:
        now = merged_at or datetime.now(timezone.utc).isoformat()
        with closing(sqlite3.connect(self._db_path)) as conn:
            cursor = conn.execute(
                """
                INSERT INTO merge_history (
                    repository, source_branch, target_branch, squash, outcome,
                    before_sha, after_sha, conflicted_files, summary, merged_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    repository,
                    outcome.source_branch,
                    outcome.target_branch,
                    1 if squash else 0,
                    outcome.kind.value,
                    outcome.before_sha,
                    outcome.after_sha,
                    json.dumps(outcome.conflicted_files, ensure_ascii=False),
                    outcome.summary,
                    now,
                ),
            )
            conn.commit()
            entry_id = int(cursor.lastrowid)

        return MergeHistoryEntry(
            id=entry_id,
            repository=repository,
            source_branch=outcome.source_branch,
            target_branch=outcome.target_branch,
            squash=squash,
            outcome=outcome.kind.value,
            before_sha=outcome.before_sha,
            after_sha=outcome.after_sha,
            conflicted_files=list(outcome.conflicted_files),
            summary=outcome.summary,
            merged_at=now,
        )

    def list_merges(self, repository: str, limit: int = 20) -> list[MergeHistoryEntry]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT id, repository, source_branch, target_branch, squash, outcome,
                       before_sha, after_sha, conflicted_files, summary, merged_at
                FROM merge_history
                WHERE repository = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (repository, max(limit, 1)),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_last_merge(self, repository: str) -> MergeHistoryEntry | None:
        items = self.list_merges(repository, limit=1)
        if not items:
            return None
        return items[0]

    def _row_to_entry(self, row: sqlite3.Row) -> MergeHistoryEntry:
        try:
            conflicted = json.loads(row["conflicted_files"] or "[]")
        except json.JSONDecodeError:
            conflicted = []
        return MergeHistoryEntry(
            id=int(row["id"]),
            repository=str(row["repository"]),
            source_branch=str(row["source_branch"]),
            target_branch=str(row["target_branch"]),
            squash=bool(row["squash"]),
            outcome=str(row["outcome"]),
            before_sha=row["before_sha"],
            after_sha=row["after_sha"],
            conflicted_files=[str(item) for item in conflicted],
            summary=str(row["summary"]),
            merged_at=str(row["merged_at"]),
        )


merge_history_service = MergeHistoryService(str(settings.sqlite_db_path))
