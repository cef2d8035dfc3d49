from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import audit, events
from app.core.database import transaction_scope
from app.crm.models import CRMActivity
from app.metrics import observe_assignment, observe_bulk_assignment_size, observe_permission_denied
from app.otel import get_tracer
from app.platform.security.context import MANAGERIAL_ROLES, Principal
from app.platform.security.errors import PermissionDeniedError, PolicyError, RecordNotFoundError
from app.platform.security.visibility import ResourceDescriptor
from app.teams.models import User


logger = logging.getLogger("app.security")
tracer = get_tracer("app.security")

ASSIGNMENT_ACTIVITY_TYPE = "assignment"


@dataclass(frozen=True, slots=True)
class AssignmentOutcome:
    record: Any
    activity: CRMActivity
    previous_assignee_id: int | None
    assignee_id: int


@dataclass(frozen=True, slots=True)
class BulkItemResult:
    id: int
    success: bool
    error: str | None = None


@dataclass(slots=True)
class BulkAssignmentResult:
    results: list[BulkItemResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(item.success for item in self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.results if item.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded


class AssignmentPolicy:
    """Who may assign records, and the side effects every assignment carries.

    Authorization is by role alone: the target record is not checked against
    the caller's visibility scope.
    """

    def ensure_can_assign(self, principal: Principal, descriptor: ResourceDescriptor, record_id: Any = None) -> None:
        if principal.role in MANAGERIAL_ROLES:
            return

        observe_permission_denied(resource=descriptor.name, action="assign")
        observe_assignment(resource=descriptor.name, mode="single" if record_id is not None else "bulk", outcome="denied")
        audit.record(
            actor_user_id=principal.id,
            entity_type=f"crm.{descriptor.name}",
            entity_id=str(record_id) if record_id is not None else "*",
            action="assignment.denied",
            details={"role": principal.role.value},
            correlation_id=principal.correlation_id,
        )
        raise PermissionDeniedError("assign", descriptor.name)

    def assign(
        self,
        session: Session,
        principal: Principal,
        model: Any,
        descriptor: ResourceDescriptor,
        record_id: int,
        assignee_id: int,
        notes: str | None = None,
    ) -> AssignmentOutcome:
        self.ensure_can_assign(principal, descriptor, record_id)
        record = self._load_record(session, model, descriptor, record_id)
        assignee = self._load_assignee(session, assignee_id)

        with tracer.start_as_current_span("security.assign") as span:
            span.set_attribute("crm.resource", descriptor.name)
            span.set_attribute("crm.record_id", record_id)
            span.set_attribute("crm.assignee_id", assignee_id)
            description = notes or f"{descriptor.label} was assigned by {principal.display_name}"
            try:
                outcome = self._apply(session, principal, record, descriptor, assignee, description)
            except SQLAlchemyError:
                observe_assignment(resource=descriptor.name, mode="single", outcome="failed")
                raise

        observe_assignment(resource=descriptor.name, mode="single", outcome="success")
        self._after_commit(principal, descriptor, outcome, bulk=False)
        return outcome

    def bulk_assign(
        self,
        session: Session,
        principal: Principal,
        model: Any,
        descriptor: ResourceDescriptor,
        record_ids: Sequence[int],
        assignee_id: int,
        notes: str | None = None,
    ) -> BulkAssignmentResult:
        """Assign each id independently; one record failing never aborts the rest."""

        self.ensure_can_assign(principal, descriptor)
        assignee = self._load_assignee(session, assignee_id)
        description = notes or f"Bulk assignment by {principal.display_name}"
        observe_bulk_assignment_size(descriptor.name, len(record_ids))

        result = BulkAssignmentResult()
        with tracer.start_as_current_span("security.bulk_assign") as span:
            span.set_attribute("crm.resource", descriptor.name)
            span.set_attribute("crm.assignee_id", assignee_id)
            span.set_attribute("crm.requested", len(record_ids))
            for record_id in record_ids:
                result.results.append(
                    self._bulk_item(session, principal, model, descriptor, record_id, assignee, description)
                )
            span.set_attribute("crm.failed", result.failed)

        logger.info(
            "assignment.bulk_completed",
            extra={
                "actor_id": principal.id,
                "resource": descriptor.name,
                "assignee_id": assignee_id,
                "requested": len(record_ids),
                "succeeded": result.succeeded,
                "failed": result.failed,
            },
        )
        return result

    def _bulk_item(
        self,
        session: Session,
        principal: Principal,
        model: Any,
        descriptor: ResourceDescriptor,
        record_id: int,
        assignee: User,
        description: str,
    ) -> BulkItemResult:
        try:
            record = self._load_record(session, model, descriptor, record_id)
            outcome = self._apply(session, principal, record, descriptor, assignee, description)
        except PolicyError as exc:
            observe_assignment(resource=descriptor.name, mode="bulk", outcome="failed")
            return BulkItemResult(id=record_id, success=False, error=str(exc))
        except SQLAlchemyError as exc:
            observe_assignment(resource=descriptor.name, mode="bulk", outcome="failed")
            logger.warning(
                "assignment.bulk_item_failed",
                extra={"resource": descriptor.name, "record_id": record_id, "error": str(exc)},
            )
            return BulkItemResult(id=record_id, success=False, error=f"Failed to assign {descriptor.label.lower()}")

        observe_assignment(resource=descriptor.name, mode="bulk", outcome="success")
        self._after_commit(principal, descriptor, outcome, bulk=True)
        return BulkItemResult(id=record_id, success=True)

    def _apply(
        self,
        session: Session,
        principal: Principal,
        record: Any,
        descriptor: ResourceDescriptor,
        assignee: User,
        description: str,
    ) -> AssignmentOutcome:
        assignee_field = descriptor.assignee_field or descriptor.owner_field
        with transaction_scope(session):
            previous_assignee_id = getattr(record, assignee_field)
            setattr(record, assignee_field, assignee.id)
            if previous_assignee_id is None and descriptor.status_field and descriptor.reset_status is not None:
                setattr(record, descriptor.status_field, descriptor.reset_status)

            activity = CRMActivity(
                type=ASSIGNMENT_ACTIVITY_TYPE,
                title=f"{descriptor.label} assigned to {assignee.full_name}",
                description=description,
                related_to=descriptor.name,
                related_id=record.id,
                created_by=principal.id,
                completed_at=datetime.now(timezone.utc),
            )
            session.add(activity)

        return AssignmentOutcome(
            record=record,
            activity=activity,
            previous_assignee_id=previous_assignee_id,
            assignee_id=assignee.id,
        )

    def _after_commit(
        self,
        principal: Principal,
        descriptor: ResourceDescriptor,
        outcome: AssignmentOutcome,
        *,
        bulk: bool,
    ) -> None:
        logger.info(
            "assignment.applied",
            extra={
                "actor_id": principal.id,
                "resource": descriptor.name,
                "record_id": outcome.record.id,
                "assignee_id": outcome.assignee_id,
                "previous_assignee_id": outcome.previous_assignee_id,
            },
        )
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": f"crm.{descriptor.name}.assigned",
                "occurred_at": datetime.now(timezone.utc).isoformat(),
                "actor_user_id": principal.id,
                "correlation_id": principal.correlation_id,
                "version": 1,
                "payload": {
                    f"{descriptor.name}_id": outcome.record.id,
                    "assigned_to": outcome.assignee_id,
                    "previous_assigned_to": outcome.previous_assignee_id,
                    "activity_id": outcome.activity.id,
                    "bulk": bulk,
                },
            }
        )

    @staticmethod
    def _load_record(session: Session, model: Any, descriptor: ResourceDescriptor, record_id: int) -> Any:
        record = session.scalar(select(model).where(model.id == record_id, model.deleted_at.is_(None)))
        if record is None:
            raise RecordNotFoundError(f"{descriptor.label} not found")
        return record

    @staticmethod
    def _load_assignee(session: Session, assignee_id: int) -> User:
        assignee = session.get(User, assignee_id)
        if assignee is None:
            raise RecordNotFoundError("User not found")
        return assignee


assignment_policy = AssignmentPolicy()
