"""
Closed enumerations shared by the ORM models, services and API schemas.

Document state machine:

    PENDING ──approve──▶ APPROVED ──process──▶ PROCESSING ──▶ PROCESSED
       │                                           │
       └──reject──▶ REJECTED                       └──▶ ERROR

REJECTED, PROCESSED and ERROR are terminal for this pipeline.
"""

from __future__ import annotations

from enum import Enum


class DocumentStatus(str, Enum):
    PENDING    = "PENDING"      # uploaded, waiting for an admin decision
    APPROVED   = "APPROVED"     # approved, processing queued
    REJECTED   = "REJECTED"     # rejected with a reason; blob removed
    PROCESSING = "PROCESSING"   # chunking + embedding in progress
    PROCESSED  = "PROCESSED"    # chunks persisted, eligible for retrieval
    ERROR      = "ERROR"        # pipeline failure, see processing_error


# Every status has an entry, terminal states map to an empty set.
ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING:    frozenset({DocumentStatus.APPROVED, DocumentStatus.REJECTED}),
    DocumentStatus.APPROVED:   frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.PROCESSED, DocumentStatus.ERROR}),
    DocumentStatus.REJECTED:   frozenset(),
    DocumentStatus.PROCESSED:  frozenset(),
    DocumentStatus.ERROR:      frozenset(),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class ChatMode(str, Enum):
    TECHNICAL = "TECHNICAL"   # technical knowledge persona
    INKOOP    = "INKOOP"      # procurement persona
    GENERAL   = "GENERAL"     # unrecognised mode requested: base prompt, no persona


class MessageRole(str, Enum):
    USER      = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM    = "SYSTEM"


class ApprovalAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT  = "REJECT"


class LogSeverity(str, Enum):
    DEBUG    = "DEBUG"
    INFO     = "INFO"
    WARN     = "WARN"
    ERROR    = "ERROR"
    CRITICAL = "CRITICAL"


class UserRole(str, Enum):
    USER        = "USER"
    ADMIN       = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
