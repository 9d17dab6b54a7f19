"""Transactional upserts for repositories, languages, stats, contributors and activity."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Optional, Sequence

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.models.repository import Repository
from app.models.repository_commit_activity import RepositoryCommitActivity
from app.models.repository_contributor import RepositoryContributor
from app.models.repository_language import RepositoryLanguage
from app.models.repository_stats import (
    CONTRIBUTORS_OWNED_COLUMNS,
    SYNC_OWNED_COLUMNS,
    ContributorsDataType,
    RepositoryStats,
)
from app.services.repos.repo_mapper import (
    map_node_to_language_rows,
    map_node_to_repository_row,
    map_node_to_stats_row,
)

logger = logging.getLogger(__name__)


class RepositoryPersistence:
    """Write side of the store. Callers own commit/rollback of each unit."""

    def persist_search_batch(
        self,
        db: Any,
        nodes: Sequence[dict[str, Any]],
        *,
        now: Optional[datetime] = None,
    ) -> dict[str, int]:
        """Upsert repositories, replace their languages and refresh sync-owned stats."""

        reference = now or datetime.now(UTC)
        persisted = 0
        skipped = 0
        languages = 0

        for node in nodes:
            try:
                repo_row = map_node_to_repository_row(node, now=reference)
                language_rows = map_node_to_language_rows(node)
                stats_row = map_node_to_stats_row(node, now=reference)
            except ValueError as exc:
                skipped += 1
                logger.warning(
                    "Skipping repository node due to mapping error",
                    extra={"github_id": node.get("databaseId"), "error": str(exc)},
                )
                continue

            repository_id = self.upsert_repository(db, repo_row)
            if language_rows is not None:
                languages += self.replace_languages(db, repository_id, language_rows)
            self.upsert_sync_stats(db, repository_id, stats_row)
            persisted += 1

        return {"input": len(nodes), "persisted": persisted, "skipped": skipped, "languages": languages}

    def upsert_repository(self, db: Any, row: dict[str, Any]) -> int:
        """Insert or update by `github_id`; returns the local repository id."""

        update_columns = [column for column in row if column != "github_id"]
        self._upsert(db, Repository, row, conflict_columns=("github_id",), update_columns=update_columns)
        return int(db.execute(select(Repository.id).where(Repository.github_id == row["github_id"])).scalar_one())

    def replace_languages(self, db: Any, repository_id: int, rows: Sequence[dict[str, Any]]) -> int:
        db.execute(delete(RepositoryLanguage).where(RepositoryLanguage.repository_id == repository_id))
        if rows:
            db.execute(insert(RepositoryLanguage), [{"repository_id": repository_id, **row} for row in rows])
        return len(rows)

    def upsert_sync_stats(self, db: Any, repository_id: int, row: dict[str, Any]) -> None:
        """Write the metric columns only, leaving contributor tracking untouched."""

        values = {"repository_id": repository_id, **{column: row[column] for column in SYNC_OWNED_COLUMNS}}
        self._upsert(
            db,
            RepositoryStats,
            values,
            conflict_columns=("repository_id",),
            update_columns=SYNC_OWNED_COLUMNS,
        )

    def replace_contributors(
        self,
        db: Any,
        repository_id: int,
        rows: Sequence[dict[str, Any]],
        *,
        data_type: ContributorsDataType,
        now: Optional[datetime] = None,
    ) -> int:
        """Swap the whole contributor set and flip the discriminator in one unit."""

        reference = now or datetime.now(UTC)
        db.execute(delete(RepositoryContributor).where(RepositoryContributor.repository_id == repository_id))

        unique_rows: dict[int, dict[str, Any]] = {}
        for row in rows:
            unique_rows.setdefault(row["github_id"], {"repository_id": repository_id, "fetched_at": reference, **row})
        if unique_rows:
            db.execute(insert(RepositoryContributor), list(unique_rows.values()))

        self._upsert(
            db,
            RepositoryStats,
            {
                "repository_id": repository_id,
                "contributors_data_type": data_type.value,
                "contributors_updated_at": reference,
            },
            conflict_columns=("repository_id",),
            update_columns=CONTRIBUTORS_OWNED_COLUMNS,
        )
        return len(unique_rows)

    def replace_commit_activity(
        self,
        db: Any,
        repository_id: int,
        rows: Sequence[dict[str, Any]],
        *,
        now: Optional[datetime] = None,
    ) -> int:
        reference = now or datetime.now(UTC)
        db.execute(delete(RepositoryCommitActivity).where(RepositoryCommitActivity.repository_id == repository_id))
        if rows:
            db.execute(
                insert(RepositoryCommitActivity),
                [{"repository_id": repository_id, "fetched_at": reference, **row} for row in rows],
            )
        return len(rows)

    @staticmethod
    def _upsert(
        db: Any,
        model: Any,
        values: dict[str, Any],
        *,
        conflict_columns: Sequence[str],
        update_columns: Sequence[str],
    ) -> None:
        dialect = db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            statement = insert(model).values(**values)
            statement = statement.on_conflict_do_update(
                index_elements=[getattr(model, column) for column in conflict_columns],
                set_={column: getattr(statement.excluded, column) for column in update_columns},
            )
            db.execute(statement)
            return

        # Portable path for other dialects.
        criteria = [getattr(model, column) == values[column] for column in conflict_columns]
        existing = db.execute(select(model).where(*criteria)).scalar_one_or_none()
        if existing is None:
            db.add(model(**values))
        else:
            for column in update_columns:
                setattr(existing, column, values[column])
        db.flush()
