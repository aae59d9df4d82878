"""
Persisted candidate, site, listing and match records.

The pipeline only talks to the RecordStore interface; JsonFileStore keeps
every record in one JSON document on disk (or in memory when no path is
given).
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from filelock import FileLock

from candidate_loader import candidate_from_dict, site_from_dict
from data_models import Candidate, CandidateStatus, Listing, Match, MatchOrigin, Site

LOGGER = logging.getLogger(__name__)

_TABLES = ("candidates", "sites", "listings", "matches")


class RecordStore(ABC):
    """Persistence surface the pipeline reads from and writes to."""

    @abstractmethod
    def add_candidate(self, candidate: Candidate) -> Candidate:
        """Insert or replace a candidate record."""

    @abstractmethod
    def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        """Return the candidate, or None when it does not exist."""

    @abstractmethod
    def list_candidates(self, owner_id: Optional[str] = None) -> List[Candidate]:
        """Return candidates, optionally restricted to one owner."""

    @abstractmethod
    def update_candidate_status(
        self, candidate_id: str, status: CandidateStatus, error_message: Optional[str] = None
    ) -> bool:
        """Set status and error message; False when the candidate is missing."""

    @abstractmethod
    def add_site(self, site: Site) -> Site:
        """Insert or replace a site record."""

    @abstractmethod
    def list_visible_sites(self, owner_id: str, active_only: bool = True) -> List[Site]:
        """Return the owner's own sites plus shared sites."""

    @abstractmethod
    def insert_listings(self, listings: Sequence[Listing]) -> List[Listing]:
        """Insert listings and return them with ids assigned."""

    @abstractmethod
    def list_listings(self, candidate_id: str) -> List[Listing]:
        """Return a candidate's listings in insertion order."""

    @abstractmethod
    def delete_listings(self, candidate_id: str) -> int:
        """Delete a candidate's listings and return how many were removed."""

    @abstractmethod
    def insert_matches(self, matches: Sequence[Match]) -> List[Match]:
        """Insert matches and return them with ids assigned."""

    @abstractmethod
    def list_matches(self, candidate_id: str) -> List[Match]:
        """Return a candidate's matches ordered by rank."""

    @abstractmethod
    def delete_matches(self, candidate_id: str) -> int:
        """Delete a candidate's matches and return how many were removed."""


def _listing_from_dict(data: Dict[str, Any]) -> Listing:
    return Listing(**data)


def _match_from_dict(data: Dict[str, Any]) -> Match:
    data = dict(data)
    data["origin"] = MatchOrigin(data.get("origin", MatchOrigin.MODEL.value))
    return Match(**data)


def _to_row(record) -> Dict[str, Any]:
    row = asdict(record)
    for key, value in row.items():
        if isinstance(value, (CandidateStatus, MatchOrigin)):
            row[key] = value.value
    return row


class JsonFileStore(RecordStore):
    """
    RecordStore backed by a single JSON document.

    Every operation holds a thread lock plus an inter-process file lock and
    reloads the document first, so several processes may share one file.
    """

    def __init__(self, path: Optional[Path] = None, lock_timeout: float = 30.0) -> None:
        """
        Open the store.

        Args:
            path: JSON file holding the records; None keeps everything in memory.
            lock_timeout: Seconds to wait for another process to release the file.
        """
        self._path = path
        self._lock = threading.Lock()
        self._file_lock = (
            FileLock(str(path) + ".lock", timeout=lock_timeout) if path else None
        )
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in _TABLES}
        if path:
            path.parent.mkdir(parents=True, exist_ok=True)
            with self._transaction():
                pass

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[Dict[str, Dict[str, Dict[str, Any]]]]:
        """
        Lock, reload from disk and yield the tables; write them back when asked.

        Nothing is written when the block raises.
        """
        with self._lock, (self._file_lock or nullcontext()):
            self._load()
            yield self._tables
            if write:
                self._flush()

    def _load(self) -> None:
        if not self._path or not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in record store: {self._path}") from exc
        for name in _TABLES:
            self._tables[name] = {row["id"]: row for row in data.get(name, [])}
        LOGGER.debug(
            "Loaded record store %s (%s)",
            self._path,
            ", ".join(f"{name}={len(rows)}" for name, rows in self._tables.items()),
        )

    def _flush(self) -> None:
        """Write all tables to disk. Caller must hold both locks."""
        if not self._path:
            return
        payload = {name: list(rows.values()) for name, rows in self._tables.items()}
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self._path)

    def add_candidate(self, candidate: Candidate) -> Candidate:
        with self._transaction(write=True) as tables:
            tables["candidates"][candidate.id] = _to_row(candidate)
        return candidate

    def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        with self._transaction() as tables:
            row = tables["candidates"].get(candidate_id)
            row = dict(row) if row else None
        return candidate_from_dict(row) if row else None

    def list_candidates(self, owner_id: Optional[str] = None) -> List[Candidate]:
        with self._transaction() as tables:
            rows = [dict(row) for row in tables["candidates"].values()]
        return [
            candidate_from_dict(row)
            for row in rows
            if owner_id is None or row["owner_id"] == owner_id
        ]

    def update_candidate_status(
        self, candidate_id: str, status: CandidateStatus, error_message: Optional[str] = None
    ) -> bool:
        with self._transaction(write=True) as tables:
            row = tables["candidates"].get(candidate_id)
            if row is None:
                return False
            row["status"] = CandidateStatus(status).value
            row["error_message"] = error_message
        return True

    def add_site(self, site: Site) -> Site:
        with self._transaction(write=True) as tables:
            tables["sites"][site.id] = _to_row(site)
        return site

    def list_visible_sites(self, owner_id: str, active_only: bool = True) -> List[Site]:
        with self._transaction() as tables:
            rows = [dict(row) for row in tables["sites"].values()]
        return [
            site_from_dict(row)
            for row in rows
            if (row["owner_id"] == owner_id or row.get("is_global"))
            and (row.get("active", True) or not active_only)
        ]

    def insert_listings(self, listings: Sequence[Listing]) -> List[Listing]:
        inserted = []
        with self._transaction(write=True) as tables:
            for listing in listings:
                listing.id = listing.id or str(uuid.uuid4())
                tables["listings"][listing.id] = _to_row(listing)
                inserted.append(listing)
        return inserted

    def list_listings(self, candidate_id: str) -> List[Listing]:
        with self._transaction() as tables:
            rows = [
                dict(row) for row in tables["listings"].values()
                if row["candidate_id"] == candidate_id
            ]
        return [_listing_from_dict(row) for row in rows]

    def delete_listings(self, candidate_id: str) -> int:
        with self._transaction(write=True) as tables:
            doomed = [
                key for key, row in tables["listings"].items()
                if row["candidate_id"] == candidate_id
            ]
            for key in doomed:
                del tables["listings"][key]
        return len(doomed)

    def insert_matches(self, matches: Sequence[Match]) -> List[Match]:
        inserted = []
        with self._transaction(write=True) as tables:
            for match in matches:
                if match.job_listing_id not in tables["listings"]:
                    raise ValueError(f"Match references unknown listing {match.job_listing_id}")
            for match in matches:
                match.id = match.id or str(uuid.uuid4())
                tables["matches"][match.id] = _to_row(match)
                inserted.append(match)
        return inserted

    def list_matches(self, candidate_id: str) -> List[Match]:
        with self._transaction() as tables:
            rows = [
                dict(row) for row in tables["matches"].values()
                if row["candidate_id"] == candidate_id
            ]
        return sorted((_match_from_dict(row) for row in rows), key=lambda m: m.rank)

    def delete_matches(self, candidate_id: str) -> int:
        with self._transaction(write=True) as tables:
            doomed = [
                key for key, row in tables["matches"].items()
                if row["candidate_id"] == candidate_id
            ]
            for key in doomed:
                del tables["matches"][key]
        return len(doomed)
