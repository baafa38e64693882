"""
Memory domain types.

MemoryKind is the closed set of long-term memory categories the background
worker consolidates into. Adding a kind means adding an enum member, a job
type and a processor branch; the job-type table checks totality at import.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from mnemo_core.domain.schemas import new_id, utcnow

SUMMARY_MAX_CHARS = 500


class MemoryKind(str, Enum):
    """Long-term memory categories."""
    EPISODIC = "episodic"        # Events and experiences from conversations
    SEMANTIC = "semantic"        # Facts and concepts
    PROCEDURAL = "procedural"    # Procedures and patterns
    RESOURCE = "resource"        # References to documents and other resources
    KNOWLEDGE = "knowledge"      # Important information to keep verbatim


class TraceStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class MemoryItem(BaseModel):
    """One consolidated memory entry."""

    id: str = Field(default_factory=lambda: new_id("mem"))
    kind: MemoryKind
    agent_id: str
    user_id: str
    organization_id: str
    summary: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)
    source: str = "conversation"
    created_at: datetime = Field(default_factory=utcnow)
    is_deleted: bool = False


class ProcessingTrace(BaseModel):
    """Record of one memory-processing run, kept for observability."""

    id: str = Field(default_factory=lambda: new_id("trace"))
    kind: MemoryKind
    agent_id: str
    organization_id: str
    status: TraceStatus
    memory_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class MemoryJobData(BaseModel):
    """Payload of a memory-consolidation job."""

    agent_id: str
    user_id: str
    organization_id: str
    message_ids: List[str] = Field(default_factory=list)
    content: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CleanupJobData(BaseModel):
    """Payload of a cleanup job. Without ``older_than`` the retention default applies."""

    organization_id: Optional[str] = None
    older_than: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)
