"""Entry points the surrounding application calls.

``RecallService`` owns the storage path, the search result cache and the
embedder for one database; nothing here is a module-level singleton.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pydantic

from . import analytics, db
from .cache import SearchResultCache, get_redis_client
from .config import Settings, load_settings
from .embeddings import EmbedFn, EmbeddingCache, Neighbor, SentenceTransformerEmbedder, TimeoutEmbedder
from .errors import DependencyUnavailable, IntegrityError, NotFoundError, ValidationError
from .identity_resolution import IdentityMatcher, MatchDecision, MatchOutcome, Mention
from .locks import KeyedLocks
from .logger import get_logger
from .merge import MergeEngine, MergeResult
from .models import Interaction, InteractionUpdate, Person, SearchResult
from .name_parser import ParsedName, canonical_name, name_keys, require_name
from .search import SearchResponse, SemanticSearchEngine
from .unified_search import UnifiedResponse, UnifiedSearchEngine

log = get_logger(__name__)

SocialHint = Tuple[str, str]


def _lock_keys(parsed: ParsedName) -> List[str]:
    return [f"name:{k}" for k in name_keys(parsed)]


def _person_lock_keys(person: Person) -> List[str]:
    return _lock_keys(ParsedName(first_name=person.first_name, last_name=person.last_name, nicknames=person.nicknames))


class RecallService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        db_path: Optional[str] = None,
        embed_fn: Optional[EmbedFn] = None,
        result_cache: Optional[SearchResultCache] = None,
        redis_client: Optional[Any] = None,
    ):
        self.settings = settings or load_settings()
        app = self.settings.app
        self.db_path = db_path or app.database_path
        db.init_db(self.db_path)

        self.matcher = IdentityMatcher(app.identity_resolution)
        self.name_locks = KeyedLocks(timeout=app.identity_resolution.lock_timeout_seconds)
        if result_cache is None:
            client = redis_client if redis_client is not None else get_redis_client(app.cache)
            result_cache = SearchResultCache(app.cache, client)
        self.result_cache = result_cache
        self.embedding_cache = EmbeddingCache(
            self.db_path,
            self.result_cache,
            dimension=app.embeddings.dimension,
            locks=KeyedLocks(timeout=app.identity_resolution.lock_timeout_seconds),
        )
        self.embedder = TimeoutEmbedder(
            embed_fn or SentenceTransformerEmbedder(app.embeddings.model_name),
            timeout_seconds=app.embeddings.timeout_seconds,
            max_workers=app.embeddings.max_workers,
        )
        self.merge_engine = MergeEngine(self.db_path, self.result_cache)
        self.search_engine = SemanticSearchEngine(
            self.db_path, self.embedding_cache, self.result_cache, self.embedder, app.search
        )
        self.unified_engine = UnifiedSearchEngine(self.db_path, self.matcher, self.search_engine, app.search)

    def close(self) -> None:
        self.embedder.close()

    # --- identity ------------------------------------------------------------

    def resolve_mention(
        self,
        name: Union[str, ParsedName],
        org_hint: Optional[str] = None,
        social_hint: Optional[SocialHint] = None,
        context: Optional[str] = None,
        title: Optional[str] = None,
    ) -> MatchDecision:
        """Match a mention to a Person, creating one when nothing matches.

        Ambiguous mentions are returned without any write; the caller confirms
        and then calls ``merge_persons`` or resolves again with more hints.
        """
        if isinstance(name, ParsedName):
            if name.is_empty:
                raise ValidationError("parsed name has no usable parts")
            parsed, raw = name, canonical_name(name)
        else:
            parsed, raw = require_name(name), name
        mention = Mention(raw_name=raw, parsed=parsed, organization=org_hint, social=social_hint, context=context)

        with self.name_locks.hold(*_lock_keys(parsed)):
            decision = self.matcher.decide(mention, db.list_persons(self.db_path))
            if decision.outcome is MatchOutcome.NO_MATCH:
                decision.person_id = self._create_person(mention, title)
                decision.created = True
                log.info("Created person %s for mention %r", decision.person_id, raw)
            elif decision.outcome is MatchOutcome.MATCHED:
                self._attach_mention(decision.person_id, mention, title)  # type: ignore[arg-type]
        return decision

    def _create_person(self, mention: Mention, title: Optional[str]) -> str:
        parsed = mention.parsed
        with db.connect(self.db_path) as conn:
            with conn.transaction():
                person_id = db.insert_person(conn, canonical_name(parsed) or mention.raw_name, parsed)
                if mention.organization:
                    db.set_current_role(conn, person_id, mention.organization, title or "")
                if mention.social:
                    db.add_social_handle(conn, person_id, *mention.social)
        return person_id

    def _attach_mention(self, person_id: str, mention: Mention, title: Optional[str]) -> None:
        parsed = mention.parsed
        with db.connect(self.db_path) as conn:
            with conn.transaction():
                person = db.load_person(conn, person_id)
                if person is None:
                    raise NotFoundError("person", person_id)
                if mention.organization:
                    db.set_current_role(conn, person_id, mention.organization, title or "")
                if mention.social:
                    db.add_social_handle(conn, person_id, *mention.social)

                nicknames = person.nicknames | parsed.nicknames
                new_name = None
                last_name, middle_names = person.last_name, person.middle_names
                if not last_name and parsed.last_name and parsed.first_name.lower() == person.first_name.lower():
                    last_name, middle_names = parsed.last_name, list(parsed.middle_names)
                    new_name = canonical_name(
                        ParsedName(first_name=person.first_name, last_name=last_name, middle_names=middle_names)
                    )
                if new_name or nicknames != person.nicknames:
                    db.update_person_names(conn, person_id, last_name, middle_names, nicknames, person.bio, name=new_name)

    def merge_persons(self, survivor_id: str, absorbed_ids: Sequence[str]) -> MergeResult:
        keys: List[str] = []
        for person_id in [survivor_id, *absorbed_ids]:
            person = db.get_person(self.db_path, person_id)
            if person is not None:
                keys.extend(_person_lock_keys(person))
        with self.name_locks.hold(*keys):
            return self.merge_engine.merge(survivor_id, absorbed_ids)

    def delete_person(self, person_id: str) -> Dict[str, int]:
        """Delete a person and, with it, their roles, handles and interactions."""
        person = db.get_person(self.db_path, person_id)
        if person is None:
            raise NotFoundError("person", person_id)
        with self.name_locks.hold(*_person_lock_keys(person)):
            try:
                counts = db.delete_person_cascade(self.db_path, person_id)
            except sqlite3.Error as exc:
                raise IntegrityError("delete_person", str(exc)) from exc
        self.result_cache.invalidate_all(reason="person deleted")
        log.info("Deleted person %s with %s", person_id, counts)
        return counts

    def get_person(self, person_id: str) -> Person:
        person = db.get_person(self.db_path, person_id)
        if person is None:
            raise NotFoundError("person", person_id)
        return person

    def list_persons(self) -> List[Person]:
        return db.list_persons(self.db_path)

    def list_merge_history(self, person_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        return db.list_merge_history(self.db_path, person_id, limit)

    # --- interactions and embeddings -----------------------------------------

    def add_interaction(
        self,
        person_id: str,
        summary: str,
        date: Optional[datetime] = None,
        full_text: Optional[str] = None,
        location: Optional[str] = None,
        embed: bool = True,
    ) -> Interaction:
        interaction = db.create_interaction(self.db_path, person_id, summary, date, full_text, location)
        if embed:
            self.record_interaction_embedding(interaction.id, interaction.text)
        return interaction

    def update_interaction(
        self, interaction_id: str, update: Union[InteractionUpdate, Dict[str, Any]]
    ) -> Interaction:
        if not isinstance(update, InteractionUpdate):
            try:
                update = InteractionUpdate(**update)
            except pydantic.ValidationError as exc:
                raise ValidationError(f"invalid interaction update: {exc}") from exc
        interaction = db.update_interaction(self.db_path, interaction_id, update)
        if update.changes_text:
            if not self.record_interaction_embedding(interaction_id, interaction.text):
                # Queued for retry; the old vector no longer describes the text.
                self.embedding_cache.delete(interaction_id, expected_text=interaction.text)
        if update.present_fields():
            self.result_cache.invalidate_all(reason="interaction updated")
        return interaction

    def delete_interaction(self, interaction_id: str) -> bool:
        with self.embedding_cache.locks.hold(f"interaction:{interaction_id}"):
            deleted = db.delete_interaction(self.db_path, interaction_id)
            if deleted:
                self.result_cache.invalidate_interaction(interaction_id)
        if not deleted:
            raise NotFoundError("interaction", interaction_id)
        return deleted

    def get_interaction(self, interaction_id: str) -> Interaction:
        interaction = db.get_interaction(self.db_path, interaction_id)
        if interaction is None:
            raise NotFoundError("interaction", interaction_id)
        return interaction

    def record_interaction_embedding(self, interaction_id: str, text: Optional[str] = None) -> bool:
        """Embed and store; returns False when the write was queued for retry.

        The vector is only stored if the interaction's text is unchanged once
        the embed call returns; a concurrent edit stores its own vector.
        """
        interaction = self.get_interaction(interaction_id)
        text = text or interaction.text
        try:
            vector = self.embedder.embed(text)
        except DependencyUnavailable as exc:
            db.enqueue_embedding(self.db_path, interaction_id, text, str(exc))
            log.warning("Queued embedding for interaction %s: %s", interaction_id, exc)
            return False
        if not self.embedding_cache.put(interaction_id, vector, expected_text=interaction.text):
            log.info("Interaction %s changed while embedding; keeping the newer vector", interaction_id)
            return True
        # A new vector can enter any query's results, not only those that cite it.
        self.result_cache.invalidate_all(reason="embedding updated")
        return True

    def process_embedding_queue(self, limit: int = 50) -> Dict[str, int]:
        """Retry queued embeddings against each interaction's current text."""
        max_attempts = self.settings.app.embeddings.max_retry_attempts
        stats = {"processed": 0, "succeeded": 0, "failed": 0}
        for item in db.list_embedding_queue(self.db_path, limit=limit, max_attempts=max_attempts):
            stats["processed"] += 1
            interaction_id = item["interaction_id"]
            interaction = db.get_interaction(self.db_path, interaction_id)
            if interaction is None:
                db.dequeue_embedding(self.db_path, interaction_id)
                stats["failed"] += 1
                continue
            try:
                vector = self.embedder.embed(interaction.text)
            except DependencyUnavailable as exc:
                db.enqueue_embedding(self.db_path, interaction_id, interaction.text, str(exc))
                stats["failed"] += 1
                continue
            try:
                stored = self.embedding_cache.put(interaction_id, vector, expected_text=interaction.text)
            except NotFoundError:
                db.dequeue_embedding(self.db_path, interaction_id)
                stats["failed"] += 1
                continue
            if stored:
                stats["succeeded"] += 1
        if stats["succeeded"]:
            self.result_cache.invalidate_all(reason="queued embeddings stored")
        log.info("Embedding queue: %s", stats)
        return stats

    def pending_embeddings(self) -> List[Dict[str, Any]]:
        return db.list_embedding_queue(self.db_path)

    # --- search ----------------------------------------------------------------

    def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        return self.search_engine.search(query, limit)

    def search_detailed(self, query: str, limit: Optional[int] = None) -> SearchResponse:
        return self.search_engine.search_detailed(query, limit)

    def hybrid_search(self, query: str, limit: Optional[int] = None) -> SearchResponse:
        return self.search_engine.hybrid_search(query, limit)

    def unified_search(self, query: str, limit: Optional[int] = None) -> UnifiedResponse:
        """Answer a natural-language question from people and notes together."""
        return self.unified_engine.search(query, limit)

    def find_similar_interactions(self, interaction_id: str, limit: int = 5) -> List[Neighbor]:
        return self.search_engine.find_similar_interactions(interaction_id, limit)

    def get_search_stats(self, hours: int = 24) -> Dict[str, Any]:
        return analytics.get_search_stats(self.db_path, hours)

    def cache_stats(self) -> Dict[str, Any]:
        return self.result_cache.get_stats()

