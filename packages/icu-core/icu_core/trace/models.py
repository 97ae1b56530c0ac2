"""
ICU Trace Models - Pydantic models for pipeline run traces.

Each trace is a JSONL file where each line is a TraceEvent.
"""
from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class EventKind(str, Enum):
    """Kind of trace event."""
    LIFECYCLE = "lifecycle"  # run_start, run_end
    STEP = "step"
    SYSTEM = "system"


class EventName(str, Enum):
    """Specific event names within each kind."""
    RUN_START = "run_start"
    RUN_END = "run_end"
    ERROR = "error"

    STEP_ENTER = "step_enter"
    STEP_EXIT = "step_exit"
    STEP_SKIPPED = "step_skipped"


# =============================================================================
# EVENT DATA MODELS
# =============================================================================

class RunStartData(BaseModel):
    """Data for run_start event."""
    pipeline: str
    graph_path: Optional[str] = None
    steps: List[str] = Field(default_factory=list)
    input: Any = None
    input_hash: Optional[str] = None


class RunEndData(BaseModel):
    """Data for run_end event."""
    status: str  # "success" | "partial" | "error"
    states: Dict[str, str] = Field(default_factory=dict)
    output_hash: Optional[str] = None
    duration_ms: float
    error: Optional[str] = None


class ErrorData(BaseModel):
    """Data for error event."""
    error_type: str
    message: str
    step: Optional[str] = None


class StepEnterData(BaseModel):
    """Data for step_enter event."""
    step: str
    depends_on: List[str] = Field(default_factory=list)
    request_hash: Optional[str] = None


class StepExitData(BaseModel):
    """Data for step_exit event (completed or failed)."""
    step: str
    state: str  # "completed" | "failed"
    output_hash: Optional[str] = None
    duration_ms: float
    error: Optional[str] = None
    error_type: Optional[str] = None


class StepSkippedData(BaseModel):
    """Data for step_skipped event."""
    step: str
    because: str


EventData = Union[
    RunStartData, RunEndData, ErrorData,
    StepEnterData, StepExitData, StepSkippedData,
    Dict[str, Any],
]


# =============================================================================
# TRACE EVENT (Envelope)
# =============================================================================

class TraceEvent(BaseModel):
    """Canonical trace event envelope."""
    v: str = "0.1"
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str
    span_id: str = Field(default_factory=lambda: generate_span_id())
    parent_span_id: Optional[str] = None
    kind: EventKind
    name: EventName
    pipeline: str = "icu"
    data: EventData = Field(default_factory=dict)

    model_config = ConfigDict(use_enum_values=True)

    def to_jsonl(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_jsonl(cls, line: str) -> "TraceEvent":
        return cls.model_validate_json(line)


class TraceRun(BaseModel):
    """A complete trace run loaded from a JSONL file."""
    run_id: str
    events: List[TraceEvent] = Field(default_factory=list)

    def filter_by_name(self, name: EventName) -> List[TraceEvent]:
        value = name.value if isinstance(name, EventName) else name
        return [e for e in self.events if e.name == value]

    def step_events(self, step: str) -> List[TraceEvent]:
        """Events whose payload refers to ``step``."""
        found = []
        for e in self.events:
            data = e.data if isinstance(e.data, dict) else e.data.model_dump()
            if data.get("step") == step:
                found.append(e)
        return found

    @classmethod
    def from_jsonl_file(cls, path: str) -> "TraceRun":
        events = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    events.append(TraceEvent.from_jsonl(line))
        run_id = events[0].run_id if events else generate_run_id()
        return cls(run_id=run_id, events=events)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def hash_data(data: Any) -> str:
    """Stable 16-character hash of JSON-like data."""
    if data is None:
        return ""
    if isinstance(data, (dict, list)):
        try:
            serialized = json.dumps(data, sort_keys=True, default=str)
        except TypeError:
            # mixed or non-string keys cannot be sorted
            serialized = str(data)
    else:
        serialized = str(data)
    return hashlib.sha256(serialized.encode()).hexdigest()[:16]


def generate_run_id() -> str:
    return f"run_{uuid4().hex[:12]}"


def generate_span_id() -> str:
    return f"sp_{uuid4().hex[:12]}"
