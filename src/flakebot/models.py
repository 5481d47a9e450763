"""Data models used across the workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


PRIMARY_SOURCE = "src/main.rs"


class WorkflowStateError(RuntimeError):
    """Raised when a workflow state invariant would be broken."""


class WorkflowStage(Enum):
    """The three proposal cycles, in the order they run."""

    BUILD_DESCRIPTOR = "build-descriptor"
    TOOLING_INSTALL = "tooling-install"
    FEATURE = "feature"

    @property
    def branch_name(self) -> str:
        return self.value

    @property
    def diff_paths(self) -> List[str]:
        """Paths the proposal diff is restricted to; empty means the whole tree."""
        if self is WorkflowStage.FEATURE:
            return [PRIMARY_SOURCE]
        return []


@dataclass
class WorkflowState:
    """Mutable record threaded through every stage of a single run."""

    instructions: str
    work_dir: Path
    repo_url: Optional[str] = None
    repo_name: Optional[str] = None
    descriptor_path: Optional[Path] = None
    binary_path: Optional[Path] = None
    completed_stages: List[WorkflowStage] = field(default_factory=list)

    def __setattr__(self, name: str, value: object) -> None:
        if name == "repo_name":
            current = self.__dict__.get("repo_name")
            if current is not None and value != current:
                raise WorkflowStateError(
                    f"repo_name is already set to {current!r}; refusing to change it to {value!r}"
                )
        super().__setattr__(name, value)

    @property
    def repo_dir(self) -> Path:
        if not self.repo_name:
            raise WorkflowStateError("repo_name has not been resolved yet")
        return self.work_dir / self.repo_name

    @property
    def source_path(self) -> Path:
        return self.repo_dir / PRIMARY_SOURCE


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass
class ChatRequest:
    """A single user-role message addressed to one model."""

    model: str
    messages: List[ChatMessage]

    @classmethod
    def from_prompt(cls, model: str, prompt: str) -> "ChatRequest":
        return cls(model=model, messages=[ChatMessage(role="user", content=prompt)])

    def to_kwargs(self) -> dict:
        return {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in self.messages],
        }


@dataclass
class ChatChoice:
    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResponse:
    """Ranked completions returned for a chat request."""

    choices: List[ChatChoice] = field(default_factory=list)
    model: Optional[str] = None

    def first_content(self) -> Optional[str]:
        if not self.choices:
            return None
        return self.choices[0].message.content


@dataclass(frozen=True)
class ValidationVerdict:
    """Judge's classification of a program snapshot."""

    satisfied: bool
    instructions: str = ""

    @classmethod
    def satisfied_verdict(cls) -> "ValidationVerdict":
        return cls(satisfied=True)

    @classmethod
    def needs_change(cls, instructions: str) -> "ValidationVerdict":
        return cls(satisfied=False, instructions=instructions)


@dataclass
class CheckResult:
    """Outcome of a static check subprocess."""

    passed: bool
    output: str = ""


@dataclass
class RepairOutcome:
    """Result of a converged repair loop."""

    snapshot: str
    iterations: int
    rewrites: int
