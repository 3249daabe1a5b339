"""
External collaborator interfaces consumed by the notification path.

    OwnershipLookup   owner_email(unit_id) -> str | None
    DocumentRenderer  render(template_type, data) -> Artifact
    EmailTransport    send(artifact, primary, cc) -> DispatchOutcome

Concrete implementations are registered per app in
``app.extensions["occupancy.collaborators"]`` by create_app(); tests swap any
of them with init_collaborators(app, transport=FakeTransport()).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from flask import current_app

from occupancy.models import db
from occupancy.models.unit import Unit

logger = logging.getLogger(__name__)

EXTENSION_KEY = "occupancy.collaborators"


# ── Value objects ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: str
    subtype: str = "html"


@dataclass(frozen=True)
class Artifact:
    """Rendered notification, ready for the transport."""

    template_type: str
    subject: str
    body: str
    attachments: tuple[Attachment, ...] = ()


@dataclass(frozen=True)
class DispatchOutcome:
    """Transport result. Check ``delivered`` before trusting ``message_id``."""

    delivered: bool
    message_id: str | None = None
    error: str | None = None


# ── Interfaces ────────────────────────────────────────────────────────────────


class OwnershipLookup(ABC):
    @abstractmethod
    def owner_email(self, unit_id: int) -> str | None:
        """Registered owner's email for the unit, or None if unknown."""


class DocumentRenderer(ABC):
    @abstractmethod
    def render(self, template_type: str, data: dict) -> Artifact:
        """Turn a template type plus request context into an Artifact."""


class EmailTransport(ABC):
    @abstractmethod
    def send(self, artifact: Artifact, primary: list[str], cc: list[str]) -> DispatchOutcome:
        """Deliver once. Implementations may raise TransportError."""


# ── Default ownership lookup ──────────────────────────────────────────────────


class UnitOwnershipLookup(OwnershipLookup):
    """Reads the owner from the local ``units`` mirror."""

    def owner_email(self, unit_id: int) -> str | None:
        unit = db.session.get(Unit, unit_id)
        if unit is None or not unit.owner_email:
            return None
        return unit.owner_email


# ── Registry ──────────────────────────────────────────────────────────────────


@dataclass
class Collaborators:
    ownership: OwnershipLookup
    renderer: DocumentRenderer
    transport: EmailTransport


def init_collaborators(app, **overrides) -> Collaborators:
    """Register the collaborator set on ``app``; keyword overrides replace defaults."""
    from occupancy.services.document_service import DocumentService
    from occupancy.services.email_service import EmailService

    current = app.extensions.get(EXTENSION_KEY)
    collaborators = Collaborators(
        ownership=overrides.get("ownership") or (current.ownership if current else UnitOwnershipLookup()),
        renderer=overrides.get("renderer") or (current.renderer if current else DocumentService()),
        transport=overrides.get("transport") or (current.transport if current else EmailService()),
    )
    app.extensions[EXTENSION_KEY] = collaborators
    logger.debug(
        "Collaborators registered: ownership=%s renderer=%s transport=%s",
        type(collaborators.ownership).__name__,
        type(collaborators.renderer).__name__,
        type(collaborators.transport).__name__,
    )
    return collaborators


def get_collaborators() -> Collaborators:
    collaborators = current_app.extensions.get(EXTENSION_KEY)
    if collaborators is None:
        collaborators = init_collaborators(current_app._get_current_object())
    return collaborators
