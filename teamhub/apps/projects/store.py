from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from teamhub.core.errors import ForbiddenError, NotFoundError


EDIT_ACTIONS = ("INSERT", "DELETE", "REPLACE")
# Edits returned alongside a document.
RECENT_EDITS = 50


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProjectRecord:
    id: str
    name: str
    teamId: str
    createdBy: str
    description: str | None = None
    createdAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DocumentRecord:
    id: str
    projectId: str
    title: str
    createdBy: str
    content: str = ""
    createdAt: str = field(default_factory=_now)
    updatedAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DocumentEditRecord:
    id: str
    documentId: str
    userId: str
    userName: str
    content: str
    startPos: int
    endPos: int
    action: str = "REPLACE"
    createdAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class InMemoryProjectStore:
    def __init__(self) -> None:
        self._projects: dict[str, ProjectRecord] = {}
        self._documents: dict[str, DocumentRecord] = {}
        self._edits: dict[str, list[DocumentEditRecord]] = {}

    def create_project(
        self,
        *,
        name: str,
        team_id: str,
        created_by: str,
        description: str | None = None,
    ) -> ProjectRecord:
        project = ProjectRecord(
            id=str(uuid4()),
            name=name,
            teamId=team_id,
            createdBy=created_by,
            description=description,
        )
        self._projects[project.id] = project
        return project

    def get_project(self, project_id: str) -> ProjectRecord | None:
        return self._projects.get(project_id)

    def require_project(self, project_id: str) -> ProjectRecord:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFoundError("Project not found")
        return project

    def projects_for_team(self, team_id: str) -> list[ProjectRecord]:
        return [project for project in self._projects.values() if project.teamId == team_id]

    def create_document(self, project_id: str, *, title: str, content: str, created_by: str) -> DocumentRecord:
        self.require_project(project_id)
        document = DocumentRecord(
            id=str(uuid4()),
            projectId=project_id,
            title=title,
            content=content,
            createdBy=created_by,
        )
        self._documents[document.id] = document
        self._edits[document.id] = []
        return document

    def documents_for(self, project_id: str) -> list[DocumentRecord]:
        documents = [document for document in self._documents.values() if document.projectId == project_id]
        return sorted(documents, key=lambda document: document.updatedAt, reverse=True)

    def require_document(self, project_id: str, document_id: str) -> DocumentRecord:
        document = self._documents.get(document_id)
        if document is None or document.projectId != project_id:
            raise NotFoundError("Document not found")
        return document

    def update_document(
        self,
        document: DocumentRecord,
        *,
        user_id: str,
        user_name: str,
        content: str,
        start_pos: int,
        end_pos: int,
        action: str,
    ) -> DocumentRecord:
        """Replace the content and record the edit as one unit.

        Only the creator may edit. The edit record is built before anything is
        mutated, so a failure leaves both the document and its history intact.
        """
        if document.createdBy != user_id:
            raise ForbiddenError("Only the document creator can edit it")
        edit = DocumentEditRecord(
            id=str(uuid4()),
            documentId=document.id,
            userId=user_id,
            userName=user_name,
            content=content[start_pos:end_pos],
            startPos=start_pos,
            endPos=end_pos,
            action=action,
        )
        document.content = content
        document.updatedAt = edit.createdAt
        self._edits[document.id].append(edit)
        return document

    def edits(self, document_id: str, limit: int = 100) -> list[DocumentEditRecord]:
        # Newest first.
        return list(reversed(self._edits.get(document_id, [])))[:limit]
