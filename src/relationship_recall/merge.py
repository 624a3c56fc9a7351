"""Fold duplicate Person records into a survivor in one transaction."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from . import db
from .errors import IntegrityError, NotFoundError, ValidationError
from .logger import get_logger, log_extra
from .models import Person
from .name_parser import ParsedName, canonical_name

log = get_logger(__name__)


@dataclass
class MergeResult:
    survivor_id: str
    absorbed_ids: List[str] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)
    roles_moved: int = 0
    handles_moved: int = 0
    interactions_moved: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.absorbed_ids)


def _fold_names(survivor: Person, absorbed: Person) -> None:
    """Union name parts of ``absorbed`` into ``survivor`` in place."""
    survivor.nicknames |= absorbed.nicknames
    if absorbed.first_name and absorbed.first_name.lower() != survivor.first_name.lower():
        survivor.nicknames.add(absorbed.first_name)
    if not survivor.last_name and absorbed.last_name:
        survivor.last_name = absorbed.last_name
        if not survivor.middle_names:
            survivor.middle_names = list(absorbed.middle_names)
    if not survivor.bio and absorbed.bio:
        survivor.bio = absorbed.bio


class MergeEngine:
    """Reassigns roles, handles and interactions, then deletes the absorbed rows.

    Every step runs inside a single ``BEGIN IMMEDIATE`` transaction; a storage
    failure rolls the whole merge back and surfaces as ``IntegrityError``
    naming the failed step. Ids that no longer exist are skipped, so retrying
    a merge after an unacknowledged commit is a no-op.
    """

    def __init__(self, db_path: str, result_cache=None):
        self.db_path = db_path
        self.result_cache = result_cache

    def merge(self, survivor_id: str, absorbed_ids: Sequence[str]) -> MergeResult:
        ids = list(dict.fromkeys(a for a in absorbed_ids if a))
        if not ids:
            raise ValidationError("at least one absorbed id is required")
        if survivor_id in ids:
            raise ValidationError("a person cannot be merged into itself")

        result = MergeResult(survivor_id=survivor_id)
        step = "begin"
        with db.connect(self.db_path) as conn:
            try:
                with conn.transaction():
                    step = "load_survivor"
                    survivor = db.load_person(conn, survivor_id)
                    if survivor is None:
                        raise NotFoundError("person", survivor_id)
                    original_last = survivor.last_name

                    for absorbed_id in ids:
                        step = "load_absorbed"
                        absorbed = db.load_person(conn, absorbed_id)
                        if absorbed is None:
                            result.skipped_ids.append(absorbed_id)
                            continue

                        step = "reassign_roles"
                        roles = db.reassign_roles(conn, absorbed_id, survivor_id)
                        step = "reassign_handles"
                        handles = db.reassign_handles(conn, absorbed_id, survivor_id)
                        step = "reassign_interactions"
                        interactions = db.reassign_interactions(conn, absorbed_id, survivor_id)

                        _fold_names(survivor, absorbed)

                        step = "delete_absorbed"
                        db.delete_person_row(conn, absorbed_id)
                        step = "record_history"
                        db.record_merge_history(
                            conn, survivor_id, absorbed_id, absorbed.name, roles, handles, interactions
                        )

                        result.absorbed_ids.append(absorbed_id)
                        result.roles_moved += roles
                        result.handles_moved += handles
                        result.interactions_moved += interactions

                    if result.changed:
                        step = "update_survivor"
                        new_name: Optional[str] = None
                        if survivor.last_name != original_last:
                            new_name = canonical_name(
                                ParsedName(
                                    first_name=survivor.first_name,
                                    last_name=survivor.last_name,
                                    middle_names=survivor.middle_names,
                                )
                            ) or None
                        db.update_person_names(
                            conn,
                            survivor_id,
                            survivor.last_name,
                            survivor.middle_names,
                            survivor.nicknames,
                            survivor.bio,
                            name=new_name,
                        )
            except sqlite3.Error as exc:
                log.error("Merge into %s rolled back at step %s: %s", survivor_id, step, exc)
                raise IntegrityError(step, str(exc)) from exc

        if result.changed and self.result_cache is not None:
            self.result_cache.invalidate_all(reason="merge")

        if result.skipped_ids:
            log.info("Merge into %s skipped already-absorbed ids: %s", survivor_id, result.skipped_ids)
        log.info(
            "Merged %d person(s) into %s (roles=%d handles=%d interactions=%d)",
            len(result.absorbed_ids),
            survivor_id,
            result.roles_moved,
            result.handles_moved,
            result.interactions_moved,
            extra=log_extra(
                event="merge",
                survivor_id=survivor_id,
                absorbed_ids=result.absorbed_ids,
                skipped_ids=result.skipped_ids,
            ),
        )
        return result
