"""Publishing approved resolutions: the `Publisher` protocol and a local JSON reference edge."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from issue_autopilot.domain.ids import generate_ulid, short_id
from issue_autopilot.domain.models import (
    PublishedChangeRef,
    ResolutionOutcome,
    ReviewOutcome,
    WorkItem,
)
from issue_autopilot.errors import CollaboratorError
from issue_autopilot.utils.fs import atomic_write


class PublishError(CollaboratorError):
    """Publisher failure; ``retryable`` decides whether the controller tries again."""

    def __init__(self, code: str, detail: str, *, retryable: bool = False) -> None:
        super().__init__(collaborator="publisher", code=code, detail=detail, retryable=retryable)


@runtime_checkable
class Publisher(Protocol):
    async def publish(
        self, resolution: ResolutionOutcome, review: ReviewOutcome, item: WorkItem
    ) -> PublishedChangeRef: ...


class LocalJsonPublisher:
    """Writes one JSON document per published change into ``output_dir``.

    The document carries the change set, the review verdict and the work item
    reference, so a human (or a later sync job) can turn it into a real
    change request.
    """

    def __init__(self, output_dir: str | Path) -> None:
        self._output_dir = Path(output_dir)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    async def publish(
        self, resolution: ResolutionOutcome, review: ReviewOutcome, item: WorkItem
    ) -> PublishedChangeRef:
        if not review.approved:
            raise PublishError("not_approved", f"refusing to publish unapproved change for {item.id}")
        if resolution.change_set.is_empty:
            raise PublishError("empty_change", f"nothing to publish for {item.id}")

        published_at = datetime.now(UTC)
        reference = f"change-{short_id(generate_ulid()).lower()}"
        branch = resolution.workspace.branch if resolution.workspace is not None else None
        document = {
            "reference": reference,
            "work_item": {"id": item.id, "title": item.title, "url": item.url},
            "branch": branch,
            "published_at": published_at.isoformat().replace("+00:00", "Z"),
            "summary": resolution.change_set.summary,
            "iterations": resolution.iterations,
            "review": {
                "score": review.score,
                "recommendations": list(review.recommendations),
                "reasoning": review.reasoning,
            },
            "change_set": resolution.change_set.to_dict(),
        }
        target = self._output_dir / f"{reference}.json"
        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            atomic_write(target, json.dumps(document, indent=2, sort_keys=True) + "\n")
        except OSError as exc:
            raise PublishError("write_failed", f"cannot write {target}: {exc}", retryable=True) from exc

        return PublishedChangeRef(
            reference=reference,
            location=str(target),
            branch=branch,
            published_at=published_at,
        )


__all__ = ["LocalJsonPublisher", "PublishError", "Publisher"]
