from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Iterable, Optional

from .db_connection import DatabaseConnection, get_database_connection
from .errors import NotFoundError, ValidationError
from .logger import get_logger
from .models import Interaction, InteractionUpdate, Organization, Person, Role, SocialMediaHandle
from .name_parser import ParsedName
from .utils import collapse_whitespace, new_id, parse_iso, snippet, to_iso, utc_now, utc_now_iso

log = get_logger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS persons (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        first_name TEXT NOT NULL DEFAULT '',
        middle_names TEXT NOT NULL DEFAULT '[]', -- JSON array
        last_name TEXT NOT NULL DEFAULT '',
        nicknames TEXT NOT NULL DEFAULT '[]', -- JSON array
        bio TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_persons_first_name ON persons(first_name COLLATE NOCASE);",
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        name_key TEXT NOT NULL UNIQUE,
        industry TEXT,
        website TEXT,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS roles (
        id TEXT PRIMARY KEY,
        person_id TEXT NOT NULL REFERENCES persons(id),
        organization_id TEXT NOT NULL REFERENCES organizations(id),
        title TEXT NOT NULL,
        start_date TEXT,
        end_date TEXT, -- NULL while the role is current
        created_at TEXT NOT NULL,
        CHECK (end_date IS NULL OR start_date IS NULL OR end_date >= start_date)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_roles_person ON roles(person_id);",
    """
    CREATE TABLE IF NOT EXISTS social_handles (
        id TEXT PRIMARY KEY,
        person_id TEXT NOT NULL REFERENCES persons(id),
        platform TEXT NOT NULL,
        handle TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_social_handles_person ON social_handles(person_id);",
    "CREATE INDEX IF NOT EXISTS idx_social_handles_key ON social_handles(platform, handle COLLATE NOCASE);",
    """
    CREATE TABLE IF NOT EXISTS interactions (
        id TEXT PRIMARY KEY,
        person_id TEXT NOT NULL REFERENCES persons(id),
        date TEXT NOT NULL,
        summary TEXT NOT NULL,
        full_text TEXT,
        location TEXT,
        snippet TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_interactions_person ON interactions(person_id);",
    "CREATE INDEX IF NOT EXISTS idx_interactions_date ON interactions(date);",
    """
    CREATE TABLE IF NOT EXISTS interaction_embeddings (
        interaction_id TEXT PRIMARY KEY REFERENCES interactions(id) ON DELETE CASCADE,
        dimension INTEGER NOT NULL,
        vector BLOB NOT NULL, -- float32 bytes
        updated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS embedding_queue (
        interaction_id TEXT PRIMARY KEY REFERENCES interactions(id) ON DELETE CASCADE,
        text TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        queued_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS merge_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        survivor_id TEXT NOT NULL,
        absorbed_id TEXT NOT NULL,
        absorbed_name TEXT,
        roles_moved INTEGER NOT NULL DEFAULT 0,
        handles_moved INTEGER NOT NULL DEFAULT 0,
        interactions_moved INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_merge_history_absorbed ON merge_history(absorbed_id);",
    """
    CREATE TABLE IF NOT EXISTS search_analytics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        fingerprint TEXT NOT NULL,
        result_count INTEGER NOT NULL,
        latency_ms REAL NOT NULL,
        cache_hit INTEGER NOT NULL DEFAULT 0,
        degraded INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_search_analytics_created ON search_analytics(created_at);",
)


def connect(db_path: str) -> DatabaseConnection:
    return get_database_connection(db_path)


def init_db(db_path: str) -> None:
    with connect(db_path) as conn:
        for statement in SCHEMA:
            conn.execute(statement)
    log.info("Database initialized at %s", db_path)


# --- row mapping -----------------------------------------------------------

def _load_json_list(raw: Any) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def _row_to_person(row: sqlite3.Row) -> Person:
    return Person(
        id=row["id"],
        name=row["name"],
        first_name=row["first_name"] or "",
        last_name=row["last_name"] or "",
        middle_names=_load_json_list(row["middle_names"]),
        nicknames=set(_load_json_list(row["nicknames"])),
        bio=row["bio"],
        created_at=parse_iso(row["created_at"]),
        updated_at=parse_iso(row["updated_at"]),
    )


def _row_to_role(row: sqlite3.Row) -> Role:
    return Role(
        id=row["id"],
        person_id=row["person_id"],
        organization_id=row["organization_id"],
        organization_name=row["organization_name"],
        title=row["title"],
        start_date=parse_iso(row["start_date"]),
        end_date=parse_iso(row["end_date"]),
    )


def _row_to_handle(row: sqlite3.Row) -> SocialMediaHandle:
    return SocialMediaHandle(
        id=row["id"],
        person_id=row["person_id"],
        platform=row["platform"],
        handle=row["handle"],
    )


def _row_to_interaction(row: sqlite3.Row) -> Interaction:
    return Interaction(
        id=row["id"],
        person_id=row["person_id"],
        date=parse_iso(row["date"]) or utc_now(),
        summary=row["summary"],
        full_text=row["full_text"],
        location=row["location"],
        snippet=row["snippet"],
        created_at=parse_iso(row["created_at"]),
        updated_at=parse_iso(row["updated_at"]),
    )


_ROLE_SELECT = """
    SELECT r.*, o.name AS organization_name
    FROM roles r
    JOIN organizations o ON o.id = r.organization_id
"""


def _attach_relations(conn: DatabaseConnection, person: Person) -> Person:
    cur = conn.execute(f"{_ROLE_SELECT} WHERE r.person_id = ? ORDER BY r.created_at, r.id;", (person.id,))
    person.roles = [_row_to_role(r) for r in cur.fetchall()]
    cur = conn.execute("SELECT * FROM social_handles WHERE person_id = ? ORDER BY created_at, id;", (person.id,))
    person.handles = [_row_to_handle(r) for r in cur.fetchall()]
    return person


# --- persons ---------------------------------------------------------------

def insert_person(conn: DatabaseConnection, name: str, parsed: ParsedName, bio: str | None = None) -> str:
    person_id = new_id()
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO persons (id, name, first_name, middle_names, last_name, nicknames, bio, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
        """,
        (
            person_id,
            collapse_whitespace(name),
            parsed.first_name,
            json.dumps(parsed.middle_names),
            parsed.last_name,
            json.dumps(sorted(parsed.nicknames)),
            bio,
            now,
            now,
        ),
    )
    return person_id


def load_person(conn: DatabaseConnection, person_id: str) -> Person | None:
    row = conn.execute("SELECT * FROM persons WHERE id = ?;", (person_id,)).fetchone()
    if row is None:
        return None
    return _attach_relations(conn, _row_to_person(row))


def get_person(db_path: str, person_id: str) -> Person | None:
    with connect(db_path) as conn:
        return load_person(conn, person_id)


def list_persons(db_path: str) -> list[Person]:
    """Snapshot of every person with roles and handles, for matching."""
    with connect(db_path) as conn:
        rows = conn.execute("SELECT * FROM persons ORDER BY created_at, id;").fetchall()
        return [_attach_relations(conn, _row_to_person(row)) for row in rows]


def count_persons(db_path: str) -> int:
    with connect(db_path) as conn:
        return int(conn.execute("SELECT COUNT(*) FROM persons;").fetchone()[0])


def _like_pattern(fragment: str) -> str:
    escaped = fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def find_persons_by_current_role(
    db_path: str, organization: str | None = None, title: str | None = None
) -> list[Person]:
    """Persons holding a current role whose organization and/or title contain the fragments."""
    clauses = ["r.end_date IS NULL"]
    params: list[Any] = []
    if organization:
        clauses.append("o.name LIKE ? ESCAPE '\\'")
        params.append(_like_pattern(organization.strip()))
    if title:
        clauses.append("r.title LIKE ? ESCAPE '\\'")
        params.append(_like_pattern(title.strip()))
    where = " AND ".join(clauses)
    with connect(db_path) as conn:
        rows = conn.execute(
            f"""
            SELECT DISTINCT p.* FROM persons p
            JOIN roles r ON r.person_id = p.id
            JOIN organizations o ON o.id = r.organization_id
            WHERE {where}
            ORDER BY p.created_at, p.id;
            """,
            tuple(params),
        ).fetchall()
        return [_attach_relations(conn, _row_to_person(row)) for row in rows]


def latest_interaction_dates(db_path: str, person_ids: list[str]) -> dict[str, datetime]:
    if not person_ids:
        return {}
    placeholders = ",".join("?" for _ in person_ids)
    with connect(db_path) as conn:
        rows = conn.execute(
            f"SELECT person_id, MAX(date) AS latest FROM interactions WHERE person_id IN ({placeholders}) GROUP BY person_id;",
            tuple(person_ids),
        ).fetchall()
    return {r["person_id"]: parse_iso(r["latest"]) for r in rows if r["latest"]}


def update_person_names(
    conn: DatabaseConnection,
    person_id: str,
    last_name: str,
    middle_names: list[str],
    nicknames: Iterable[str],
    bio: str | None,
    name: str | None = None,
) -> None:
    conn.execute(
        """
        UPDATE persons
        SET name = COALESCE(?, name), last_name = ?, middle_names = ?, nicknames = ?, bio = ?, updated_at = ?
        WHERE id = ?;
        """,
        (
            name,
            last_name,
            json.dumps(middle_names),
            json.dumps(sorted(set(nicknames))),
            bio,
            utc_now_iso(),
            person_id,
        ),
    )


def delete_person_row(conn: DatabaseConnection, person_id: str) -> int:
    return conn.execute("DELETE FROM persons WHERE id = ?;", (person_id,)).rowcount


# --- organizations and roles -----------------------------------------------

def get_or_create_organization(conn: DatabaseConnection, name: str) -> Organization:
    display = collapse_whitespace(name)
    if not display:
        raise ValidationError("organization name must not be empty")
    key = display.lower()
    row = conn.execute("SELECT * FROM organizations WHERE name_key = ?;", (key,)).fetchone()
    if row:
        return Organization(id=row["id"], name=row["name"], industry=row["industry"], website=row["website"])
    org_id = new_id()
    conn.execute(
        "INSERT INTO organizations (id, name, name_key, created_at) VALUES (?, ?, ?, ?);",
        (org_id, display, key, utc_now_iso()),
    )
    return Organization(id=org_id, name=display)


def set_current_role(conn: DatabaseConnection, person_id: str, organization_name: str, title: str) -> bool:
    """Record an open role; other open roles of the person become previous.

    Returns True when a new role row was written.
    """
    org = get_or_create_organization(conn, organization_name)
    now = utc_now_iso()
    # A start date after "now" cannot be closed without violating end >= start.
    conn.execute(
        """
        UPDATE roles SET end_date = CASE WHEN start_date IS NOT NULL AND start_date > ? THEN start_date ELSE ? END
        WHERE person_id = ? AND end_date IS NULL AND organization_id != ?;
        """,
        (now, now, person_id, org.id),
    )
    existing = conn.execute(
        "SELECT 1 FROM roles WHERE person_id = ? AND organization_id = ? AND end_date IS NULL;",
        (person_id, org.id),
    ).fetchone()
    if existing:
        return False
    conn.execute(
        """
        INSERT INTO roles (id, person_id, organization_id, title, start_date, end_date, created_at)
        VALUES (?, ?, ?, ?, ?, NULL, ?);
        """,
        (new_id(), person_id, org.id, title or "Unknown role", now, now),
    )
    return True


def add_previous_role(
    conn: DatabaseConnection,
    person_id: str,
    organization_name: str,
    title: str,
    end_date: datetime,
    start_date: datetime | None = None,
) -> None:
    if start_date is not None and end_date < start_date:
        raise ValidationError("previous role must end on or after its start date")
    org = get_or_create_organization(conn, organization_name)
    conn.execute(
        """
        INSERT INTO roles (id, person_id, organization_id, title, start_date, end_date, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?);
        """,
        (
            new_id(),
            person_id,
            org.id,
            title or "Previous role",
            to_iso(start_date) if start_date else None,
            to_iso(end_date),
            utc_now_iso(),
        ),
    )


def normalize_handle(platform: str, handle: str) -> tuple[str, str]:
    return collapse_whitespace(platform).lower(), collapse_whitespace(handle).lstrip("@")


def add_social_handle(conn: DatabaseConnection, person_id: str, platform: str, handle: str) -> bool:
    platform, handle = normalize_handle(platform, handle)
    if not platform or not handle:
        raise ValidationError("social handle needs both platform and handle")
    existing = conn.execute(
        "SELECT 1 FROM social_handles WHERE person_id = ? AND platform = ? AND handle = ? COLLATE NOCASE;",
        (person_id, platform, handle),
    ).fetchone()
    if existing:
        return False
    conn.execute(
        "INSERT INTO social_handles (id, person_id, platform, handle, created_at) VALUES (?, ?, ?, ?, ?);",
        (new_id(), person_id, platform, handle, utc_now_iso()),
    )
    return True


# --- merge steps -------------------------------------------------------------

def reassign_roles(conn: DatabaseConnection, from_person: str, to_person: str) -> int:
    """Move roles, dropping exact duplicates the target already holds."""
    conn.execute(
        """
        DELETE FROM roles
        WHERE person_id = ?
          AND EXISTS (
            SELECT 1 FROM roles s
            WHERE s.person_id = ?
              AND s.organization_id = roles.organization_id
              AND s.title = roles.title
              AND s.end_date IS roles.end_date
          );
        """,
        (from_person, to_person),
    )
    return conn.execute("UPDATE roles SET person_id = ? WHERE person_id = ?;", (to_person, from_person)).rowcount


def reassign_handles(conn: DatabaseConnection, from_person: str, to_person: str) -> int:
    conn.execute(
        """
        DELETE FROM social_handles
        WHERE person_id = ?
          AND EXISTS (
            SELECT 1 FROM social_handles s
            WHERE s.person_id = ?
              AND s.platform = social_handles.platform
              AND s.handle = social_handles.handle COLLATE NOCASE
          );
        """,
        (from_person, to_person),
    )
    return conn.execute(
        "UPDATE social_handles SET person_id = ? WHERE person_id = ?;", (to_person, from_person)
    ).rowcount


def reassign_interactions(conn: DatabaseConnection, from_person: str, to_person: str) -> int:
    return conn.execute(
        "UPDATE interactions SET person_id = ?, updated_at = ? WHERE person_id = ?;",
        (to_person, utc_now_iso(), from_person),
    ).rowcount


def record_merge_history(
    conn: DatabaseConnection,
    survivor_id: str,
    absorbed_id: str,
    absorbed_name: str | None,
    roles_moved: int,
    handles_moved: int,
    interactions_moved: int,
) -> None:
    conn.execute(
        """
        INSERT INTO merge_history (
            survivor_id, absorbed_id, absorbed_name, roles_moved, handles_moved, interactions_moved, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?);
        """,
        (survivor_id, absorbed_id, absorbed_name, roles_moved, handles_moved, interactions_moved, utc_now_iso()),
    )


def list_merge_history(db_path: str, person_id: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
    with connect(db_path) as conn:
        if person_id:
            cur = conn.execute(
                """
                SELECT * FROM merge_history
                WHERE survivor_id = ? OR absorbed_id = ?
                ORDER BY id DESC LIMIT ?;
                """,
                (person_id, person_id, limit),
            )
        else:
            cur = conn.execute("SELECT * FROM merge_history ORDER BY id DESC LIMIT ?;", (limit,))
        return [dict(row) for row in cur.fetchall()]


def delete_person_cascade(db_path: str, person_id: str) -> dict[str, int]:
    """Delete a person with every dependent row in one transaction."""
    with connect(db_path) as conn:
        with conn.transaction():
            if conn.execute("SELECT 1 FROM persons WHERE id = ?;", (person_id,)).fetchone() is None:
                raise NotFoundError("person", person_id)
            counts = {
                # Embeddings and queue rows go with their interactions via ON DELETE CASCADE.
                "interactions": conn.execute("DELETE FROM interactions WHERE person_id = ?;", (person_id,)).rowcount,
                "roles": conn.execute("DELETE FROM roles WHERE person_id = ?;", (person_id,)).rowcount,
                "handles": conn.execute("DELETE FROM social_handles WHERE person_id = ?;", (person_id,)).rowcount,
            }
            delete_person_row(conn, person_id)
    return counts


# --- interactions ------------------------------------------------------------

def create_interaction(
    db_path: str,
    person_id: str,
    summary: str,
    date: datetime | None = None,
    full_text: str | None = None,
    location: str | None = None,
) -> Interaction:
    if not summary or not summary.strip():
        raise ValidationError("interaction summary must not be empty")
    interaction_id = new_id()
    now = utc_now_iso()
    text = full_text or summary
    with connect(db_path) as conn:
        if conn.execute("SELECT 1 FROM persons WHERE id = ?;", (person_id,)).fetchone() is None:
            raise NotFoundError("person", person_id)
        conn.execute(
            """
            INSERT INTO interactions (id, person_id, date, summary, full_text, location, snippet, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                interaction_id,
                person_id,
                to_iso(date) if date else now,
                summary.strip(),
                full_text,
                location,
                snippet(text),
                now,
                now,
            ),
        )
        row = conn.execute("SELECT * FROM interactions WHERE id = ?;", (interaction_id,)).fetchone()
    return _row_to_interaction(row)


def get_interaction(db_path: str, interaction_id: str) -> Interaction | None:
    with connect(db_path) as conn:
        row = conn.execute("SELECT * FROM interactions WHERE id = ?;", (interaction_id,)).fetchone()
    return _row_to_interaction(row) if row else None


def list_interactions(db_path: str, person_id: str | None = None) -> list[Interaction]:
    with connect(db_path) as conn:
        if person_id:
            cur = conn.execute("SELECT * FROM interactions WHERE person_id = ? ORDER BY date DESC, id;", (person_id,))
        else:
            cur = conn.execute("SELECT * FROM interactions ORDER BY date DESC, id;")
        return [_row_to_interaction(row) for row in cur.fetchall()]


def update_interaction(db_path: str, interaction_id: str, update: InteractionUpdate) -> Interaction:
    """Apply exactly the fields present on ``update``."""
    fields = update.present_fields()
    assignments: list[str] = []
    params: list[Any] = []
    for column in ("summary", "location", "full_text", "snippet"):
        if column in fields:
            assignments.append(f"{column} = ?")
            params.append(getattr(update, column))
    if "date" in fields:
        if update.date is None:
            raise ValidationError("interaction date cannot be cleared")
        assignments.append("date = ?")
        params.append(to_iso(update.date))
    if "summary" in fields and update.summary is None:
        raise ValidationError("interaction summary cannot be cleared")

    with connect(db_path) as conn:
        with conn.transaction():
            row = conn.execute("SELECT * FROM interactions WHERE id = ?;", (interaction_id,)).fetchone()
            if row is None:
                raise NotFoundError("interaction", interaction_id)
            if assignments:
                if update.changes_text and "snippet" not in fields:
                    current = _row_to_interaction(row)
                    new_full = update.full_text if "full_text" in fields else current.full_text
                    new_summary = update.summary if "summary" in fields else current.summary
                    assignments.append("snippet = ?")
                    params.append(snippet(new_full or new_summary or ""))
                assignments.append("updated_at = ?")
                params.append(utc_now_iso())
                # Column names come from the fixed tuple above, never from input.
                conn.execute(
                    f"UPDATE interactions SET {', '.join(assignments)} WHERE id = ?;",
                    (*params, interaction_id),
                )
            row = conn.execute("SELECT * FROM interactions WHERE id = ?;", (interaction_id,)).fetchone()
    return _row_to_interaction(row)


def delete_interaction(db_path: str, interaction_id: str) -> bool:
    with connect(db_path) as conn:
        return conn.execute("DELETE FROM interactions WHERE id = ?;", (interaction_id,)).rowcount > 0


def list_interaction_texts(db_path: str) -> list[dict[str, Any]]:
    """Id, date and searchable text of every interaction."""
    with connect(db_path) as conn:
        cur = conn.execute("SELECT id, date, summary, full_text, location FROM interactions;")
        return [dict(row) for row in cur.fetchall()]


# --- embeddings ----------------------------------------------------------------

def upsert_embedding(db_path: str, interaction_id: str, dimension: int, vector: bytes) -> bool:
    """Store a vector; returns False when the row replaced an existing one."""
    with connect(db_path) as conn:
        with conn.transaction():
            if conn.execute("SELECT 1 FROM interactions WHERE id = ?;", (interaction_id,)).fetchone() is None:
                raise NotFoundError("interaction", interaction_id)
            existed = conn.execute(
                "SELECT 1 FROM interaction_embeddings WHERE interaction_id = ?;", (interaction_id,)
            ).fetchone()
            conn.execute(
                """
                INSERT INTO interaction_embeddings (interaction_id, dimension, vector, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(interaction_id) DO UPDATE SET
                    dimension = excluded.dimension,
                    vector = excluded.vector,
                    updated_at = excluded.updated_at;
                """,
                (interaction_id, dimension, sqlite3.Binary(vector), utc_now_iso()),
            )
            conn.execute("DELETE FROM embedding_queue WHERE interaction_id = ?;", (interaction_id,))
    return existed is None


def get_embedding_row(db_path: str, interaction_id: str) -> Optional[sqlite3.Row]:
    with connect(db_path) as conn:
        return conn.execute(
            "SELECT interaction_id, dimension, vector FROM interaction_embeddings WHERE interaction_id = ?;",
            (interaction_id,),
        ).fetchone()


def get_embedding_rows(db_path: str, interaction_ids: list[str]) -> list[sqlite3.Row]:
    if not interaction_ids:
        return []
    placeholders = ",".join("?" for _ in interaction_ids)
    with connect(db_path) as conn:
        return conn.execute(
            f"SELECT interaction_id, dimension, vector FROM interaction_embeddings WHERE interaction_id IN ({placeholders});",
            tuple(interaction_ids),
        ).fetchall()


def list_embedding_rows(db_path: str) -> list[sqlite3.Row]:
    """Every stored vector joined with its interaction date."""
    with connect(db_path) as conn:
        return conn.execute(
            """
            SELECT e.interaction_id, e.dimension, e.vector, i.date
            FROM interaction_embeddings e
            JOIN interactions i ON i.id = e.interaction_id;
            """
        ).fetchall()


def delete_embedding(db_path: str, interaction_id: str) -> bool:
    with connect(db_path) as conn:
        return conn.execute(
            "DELETE FROM interaction_embeddings WHERE interaction_id = ?;", (interaction_id,)
        ).rowcount > 0


def count_embeddings(db_path: str) -> int:
    with connect(db_path) as conn:
        return int(conn.execute("SELECT COUNT(*) FROM interaction_embeddings;").fetchone()[0])


def get_embedding_dimension(db_path: str) -> int | None:
    """Dimension of any stored vector; all stored vectors share it."""
    with connect(db_path) as conn:
        row = conn.execute("SELECT dimension FROM interaction_embeddings LIMIT 1;").fetchone()
    return int(row["dimension"]) if row else None


def enqueue_embedding(db_path: str, interaction_id: str, text: str, error: str | None) -> None:
    now = utc_now_iso()
    with connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO embedding_queue (interaction_id, text, attempts, last_error, queued_at, updated_at)
            VALUES (?, ?, 1, ?, ?, ?)
            ON CONFLICT(interaction_id) DO UPDATE SET
                text = excluded.text,
                attempts = embedding_queue.attempts + 1,
                last_error = excluded.last_error,
                updated_at = excluded.updated_at;
            """,
            (interaction_id, text, error, now, now),
        )


def list_embedding_queue(db_path: str, limit: int = 100, max_attempts: int | None = None) -> list[dict[str, Any]]:
    with connect(db_path) as conn:
        if max_attempts is None:
            cur = conn.execute("SELECT * FROM embedding_queue ORDER BY queued_at LIMIT ?;", (limit,))
        else:
            cur = conn.execute(
                "SELECT * FROM embedding_queue WHERE attempts < ? ORDER BY queued_at LIMIT ?;",
                (max_attempts, limit),
            )
        return [dict(row) for row in cur.fetchall()]


def dequeue_embedding(db_path: str, interaction_id: str) -> None:
    with connect(db_path) as conn:
        conn.execute("DELETE FROM embedding_queue WHERE interaction_id = ?;", (interaction_id,))


# --- analytics -------------------------------------------------------------------

def insert_search_analytics(
    db_path: str,
    fingerprint: str,
    result_count: int,
    latency_ms: float,
    cache_hit: bool,
    degraded: bool,
) -> None:
    with connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO search_analytics (fingerprint, result_count, latency_ms, cache_hit, degraded, created_at)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (fingerprint, result_count, latency_ms, int(cache_hit), int(degraded), utc_now_iso()),
        )
