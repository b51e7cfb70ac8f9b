"""
Change Store: versioned persistence of a project's change requests.

The store holds one document per project: the full list of change requests
plus an integer version. Writers follow read → mutate in memory → write back
with the version they read; a write based on a stale version raises
``ConflictError`` and nothing is saved. The store never merges.

Usage:
    store = SqlChangeStore()
    with store.atomic():
        current = store.load_changes(project_id)
        ...
        store.save_changes(project_id, new_changes, current.version)
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Iterator, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from change_governance.core.exceptions import ConflictError, NotFoundError
from change_governance.models import db
from change_governance.models.change_log import ProjectChangeLog
from change_governance.models.change_request import ChangeRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeSet:
    """A project's change requests as read, with the version they were read at."""
    project_id: int
    changes: tuple[ChangeRequest, ...]
    version: int

    def find(self, change_id: str) -> ChangeRequest:
        for change in self.changes:
            if change.id == change_id or change.change_number == change_id:
                return change
        raise NotFoundError("ChangeRequest", change_id)

    def with_change(self, updated: ChangeRequest) -> tuple[ChangeRequest, ...]:
        """Return the change tuple with ``updated`` replacing (or appended as) its id."""
        replaced = False
        result = []
        for change in self.changes:
            if change.id == updated.id:
                result.append(updated)
                replaced = True
            else:
                result.append(change)
        if not replaced:
            result.append(updated)
        return tuple(result)

    @property
    def next_sequence(self) -> int:
        return max((c.sequence for c in self.changes), default=0) + 1


class ChangeStore(ABC):
    """Persistence interface for per-project change documents."""

    @abstractmethod
    def load_changes(self, project_id: int) -> ChangeSet:
        """Return every change of the project and the current version (0 when none stored)."""

    @abstractmethod
    def save_changes(
        self,
        project_id: int,
        changes: Sequence[ChangeRequest],
        expected_version: int,
    ) -> int:
        """Persist ``changes`` if the stored version still equals ``expected_version``.

        Returns the new version. Raises ``ConflictError`` otherwise.
        """

    @abstractmethod
    def atomic(self):
        """Context manager: commit on success, roll back on any error."""


class SqlChangeStore(ChangeStore):
    """Flask-SQLAlchemy implementation backed by ``project_change_logs``."""

    def load_changes(self, project_id: int) -> ChangeSet:
        row = db.session.get(ProjectChangeLog, project_id)
        if row is None:
            return ChangeSet(project_id=project_id, changes=(), version=0)
        raw = json.loads(row.changes_json or "[]")
        return ChangeSet(
            project_id=project_id,
            changes=tuple(ChangeRequest.from_dict(item) for item in raw),
            version=row.version,
        )

    def _current_version(self, project_id: int) -> int | None:
        return db.session.execute(
            select(ProjectChangeLog.version).where(ProjectChangeLog.project_id == project_id)
        ).scalar_one_or_none()

    def save_changes(
        self,
        project_id: int,
        changes: Sequence[ChangeRequest],
        expected_version: int,
    ) -> int:
        payload = json.dumps([c.to_dict() for c in changes], default=str)
        now = datetime.now(UTC)
        new_version = expected_version + 1

        if expected_version == 0:
            actual = self._current_version(project_id)
            if actual is not None:
                raise ConflictError("ProjectChangeLog", project_id, expected_version, actual)
            try:
                db.session.add(ProjectChangeLog(
                    project_id=project_id,
                    version=new_version,
                    changes_json=payload,
                    updated_at=now,
                ))
                db.session.flush()
            except IntegrityError:
                db.session.rollback()
                raise ConflictError("ProjectChangeLog", project_id, expected_version)
        else:
            result = db.session.execute(
                update(ProjectChangeLog)
                .where(
                    ProjectChangeLog.project_id == project_id,
                    ProjectChangeLog.version == expected_version,
                )
                .values(version=new_version, changes_json=payload, updated_at=now)
            )
            if result.rowcount == 0:
                actual = self._current_version(project_id)
                raise ConflictError("ProjectChangeLog", project_id, expected_version, actual)

        logger.debug(
            "Change log saved project=%s version=%s changes=%s",
            project_id, new_version, len(changes),
            extra={"project_id": project_id},
        )
        return new_version

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            yield
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
