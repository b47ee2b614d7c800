"""
SQLite persistence for prospects, projects and mini-sites.

Each record is stored as one camelCase JSON document plus the handful of
columns the pipeline queries on (hash, status, slug, links).  Slug columns
are UNIQUE so a lost read-then-write race surfaces as
``sqlite3.IntegrityError`` instead of a silent duplicate.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import closing
from pathlib import Path
from typing import Any

from brochure.config import settings
from brochure.errors import ProspectNotFoundError
from brochure.schemas import MiniSite, Project, Prospect, utcnow

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS prospects (
    id         TEXT PRIMARY KEY,
    file_hash  TEXT,
    status     TEXT NOT NULL,
    data       TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_prospects_hash ON prospects (file_hash);

CREATE TABLE IF NOT EXISTS projects (
    id          TEXT PRIMARY KEY,
    slug        TEXT NOT NULL UNIQUE,
    prospect_id TEXT,
    data        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS mini_sites (
    id          TEXT PRIMARY KEY,
    slug        TEXT NOT NULL UNIQUE,
    project_id  TEXT NOT NULL,
    prospect_id TEXT,
    data        TEXT NOT NULL
);
"""

SLUG_TABLES = {"project": "projects", "mini_site": "mini_sites"}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ProspectStore:
    """Create / update / get by id for the three pipeline record types."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path or settings.sqlite_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.executescript(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.path))

    def _fetch_one(self, sql: str, params: tuple) -> str | None:
        with closing(self._connect()) as conn:
            row = conn.execute(sql, params).fetchone()
        return row[0] if row else None

    def _execute(self, sql: str, params: tuple) -> int:
        with closing(self._connect()) as conn:
            with conn:
                cursor = conn.execute(sql, params)
            return cursor.rowcount

    # ── Prospects ────────────────────────────────────────────────────────

    def create_prospect(
        self,
        file_name: str,
        *,
        file_url: str | None = None,
        file_hash: str | None = None,
    ) -> Prospect:
        prospect = Prospect(
            id=uuid.uuid4().hex, file_name=file_name, file_url=file_url, file_hash=file_hash
        )
        self._execute(
            "INSERT INTO prospects (id, file_hash, status, data) VALUES (?, ?, ?, ?)",
            (prospect.id, file_hash, prospect.status.value, prospect.model_dump_json(by_alias=True)),
        )
        logger.info("Created prospect %s (%s)", prospect.id, file_name)
        return prospect

    def get_prospect(self, prospect_id: str) -> Prospect:
        data = self._fetch_one("SELECT data FROM prospects WHERE id = ?", (prospect_id,))
        if data is None:
            raise ProspectNotFoundError(f"Prospect {prospect_id} not found")
        return Prospect.model_validate_json(data)

    def find_prospect_by_hash(self, file_hash: str) -> Prospect | None:
        data = self._fetch_one(
            "SELECT data FROM prospects WHERE file_hash = ? LIMIT 1", (file_hash,)
        )
        return Prospect.model_validate_json(data) if data else None

    def save_prospect(self, prospect: Prospect) -> Prospect:
        updated = self._execute(
            "UPDATE prospects SET file_hash = ?, status = ?, data = ? WHERE id = ?",
            (
                prospect.file_hash,
                prospect.status.value,
                prospect.model_dump_json(by_alias=True),
                prospect.id,
            ),
        )
        if not updated:
            raise ProspectNotFoundError(f"Prospect {prospect.id} not found")
        return prospect

    def update_prospect(self, prospect_id: str, **fields: Any) -> Prospect:
        """Validate *fields* onto the stored prospect and persist it."""
        current = self.get_prospect(prospect_id)
        merged = Prospect.model_validate({**dict(current), **fields})
        return self.save_prospect(merged)

    # ── Projects ─────────────────────────────────────────────────────────

    def insert_project(self, project: Project) -> Project:
        self._execute(
            "INSERT INTO projects (id, slug, prospect_id, data) VALUES (?, ?, ?, ?)",
            (project.id, project.slug, project.prospect_id, project.model_dump_json(by_alias=True)),
        )
        return project

    def update_project(self, project: Project) -> Project:
        project.updated_at = utcnow()
        self._execute(
            "UPDATE projects SET slug = ?, prospect_id = ?, data = ? WHERE id = ?",
            (project.slug, project.prospect_id, project.model_dump_json(by_alias=True), project.id),
        )
        return project

    def get_project(self, project_id: str) -> Project | None:
        data = self._fetch_one("SELECT data FROM projects WHERE id = ?", (project_id,))
        return Project.model_validate_json(data) if data else None

    # ── Mini-sites ───────────────────────────────────────────────────────

    def insert_mini_site(self, mini_site: MiniSite) -> MiniSite:
        self._execute(
            "INSERT INTO mini_sites (id, slug, project_id, prospect_id, data) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                mini_site.id,
                mini_site.slug,
                mini_site.project_id,
                mini_site.prospect_id,
                mini_site.model_dump_json(by_alias=True),
            ),
        )
        return mini_site

    def get_mini_site(self, mini_site_id: str) -> MiniSite | None:
        data = self._fetch_one("SELECT data FROM mini_sites WHERE id = ?", (mini_site_id,))
        return MiniSite.model_validate_json(data) if data else None

    def delete_mini_site(self, mini_site_id: str) -> bool:
        return self._execute("DELETE FROM mini_sites WHERE id = ?", (mini_site_id,)) > 0

    def count_mini_sites(self, prospect_id: str) -> int:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM mini_sites WHERE prospect_id = ?", (prospect_id,)
            ).fetchone()
        return row[0]

    # ── Slugs ────────────────────────────────────────────────────────────

    def slugs_with_prefix(self, kind: str, prefix: str) -> set[str]:
        """Existing slugs in the *kind* namespace that start with *prefix*."""
        table = SLUG_TABLES[kind]
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"SELECT slug FROM {table} WHERE slug LIKE ? ESCAPE '\\'",
                (_escape_like(prefix) + "%",),
            ).fetchall()
        return {row[0] for row in rows}
