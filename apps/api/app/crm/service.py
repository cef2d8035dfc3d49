from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from app import events
from app.core.database import transaction_scope
from app.crm.models import (
    CRMActivity,
    CRMAppointment,
    CRMCompany,
    CRMContact,
    CRMLead,
    CRMOpportunity,
    CRMProduct,
    CRMQuotation,
    CRMQuotationItem,
    CRMSalesOrder,
    CRMSalesOrderItem,
    CRMTask,
)
from app.crm.repositories import (
    activity_repository,
    appointment_repository,
    company_repository,
    contact_repository,
    lead_repository,
    opportunity_repository,
    quotation_repository,
    sales_order_repository,
    task_repository,
)
from app.crm.schemas import (
    ActivityRead,
    AppointmentRead,
    AssignRequest,
    BulkAssignItem,
    BulkAssignRequest,
    BulkAssignResponse,
    CompanyRead,
    ContactRead,
    LeadRead,
    LineItemCreate,
    OpportunityRead,
    ProductCreate,
    ProductRead,
    ProductUpdate,
    QuotationItemRead,
    QuotationRead,
    SalesOrderItemRead,
    SalesOrderRead,
    TaskRead,
)
from app.metrics import observe_permission_denied
from app.platform.security.assignment import assignment_policy
from app.platform.security.context import MANAGERIAL_ROLES, Principal
from app.platform.security.errors import PermissionDeniedError, PolicyError, RecordNotFoundError
from app.platform.security.repository import BaseRepository
from app.teams.models import User


logger = logging.getLogger("app.crm")

# Written only as a side effect of assignments; never edited or deleted through the API.
IMMUTABLE_ACTIVITY_TYPES = frozenset({"assignment", "team_assignment", "manager_assignment"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def policy_http_error(exc: PolicyError) -> HTTPException:
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _offset(cursor: str | None) -> int:
    return int(cursor) if cursor and cursor.isdigit() else 0


def publish_crm_event(event_type: str, principal: Principal, payload: dict[str, Any]) -> None:
    events.publish(
        {
            "event_id": str(uuid.uuid4()),
            "event_type": event_type,
            "occurred_at": utcnow().isoformat(),
            "actor_user_id": principal.id,
            "correlation_id": principal.correlation_id,
            "version": 1,
            "payload": payload,
        }
    )


def ensure_reference(session: Session, model: Any, record_id: int | None, label: str) -> None:
    if record_id is None:
        return
    stmt = select(model.id).where(model.id == record_id)
    if hasattr(model, "deleted_at"):
        stmt = stmt.where(model.deleted_at.is_(None))
    if session.scalar(stmt) is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{label} not found")


class ScopedResourceService:
    """CRUD over an ownable resource; every read goes through the repository's visibility scope."""

    repository: BaseRepository
    read_schema: type[BaseModel]
    # Never writable through create/update payloads.
    protected_fields = frozenset({"id", "created_by", "assigned_to", "created_at", "updated_at", "deleted_at"})

    @property
    def model(self) -> Any:
        return self.repository.model

    @property
    def name(self) -> str:
        return self.repository.descriptor.name

    @property
    def label(self) -> str:
        return self.repository.descriptor.label

    def list_records(
        self,
        session: Session,
        principal: Principal,
        filters: dict[str, Any] | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[Any]:
        stmt = self._apply_filters(self.repository.base_query(), filters or {})
        rows = self.repository.list_visible(session, principal, stmt, offset=_offset(cursor), limit=limit)
        return [self._to_read(row) for row in rows]

    def get_record(self, session: Session, principal: Principal, record_id: int) -> Any:
        return self._to_read(self.get_visible_or_404(session, principal, record_id))

    def get_visible_or_404(self, session: Session, principal: Principal, record_id: int) -> Any:
        # Hidden and missing records are indistinguishable to the caller.
        record = self.repository.get_visible(session, principal, record_id)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.label} not found")
        return record

    def create_record(self, session: Session, principal: Principal, dto: BaseModel) -> Any:
        payload = self._writable(dto.model_dump(exclude_unset=False))
        payload = self._prepare_create(session, principal, dto, payload)
        with transaction_scope(session):
            record = self.model(**payload, created_by=principal.id)
            session.add(record)
            session.flush()
            self._after_create(session, principal, dto, record)

        logger.info("crm.created", extra={"actor_id": principal.id, "resource": self.name, "record_id": record.id})
        publish_crm_event(f"crm.{self.name}.created", principal, {f"{self.name}_id": record.id})
        return self._to_read(record)

    def update_record(self, session: Session, principal: Principal, record_id: int, dto: BaseModel) -> Any:
        record = self.get_visible_or_404(session, principal, record_id)
        self._before_mutation(principal, record, "update")
        payload = self._writable(dto.model_dump(exclude_unset=True))
        self._validate_references(session, payload)
        self._validate_merged(session, record, payload)
        with transaction_scope(session):
            for field_name, value in payload.items():
                setattr(record, field_name, value)

        publish_crm_event(
            f"crm.{self.name}.updated",
            principal,
            {f"{self.name}_id": record.id, "changed_fields": sorted(payload)},
        )
        return self._to_read(record)

    def soft_delete_record(self, session: Session, principal: Principal, record_id: int) -> None:
        record = self.get_visible_or_404(session, principal, record_id)
        self._before_mutation(principal, record, "delete")
        with transaction_scope(session):
            record.deleted_at = utcnow()

        logger.info("crm.deleted", extra={"actor_id": principal.id, "resource": self.name, "record_id": record_id})
        publish_crm_event(f"crm.{self.name}.deleted", principal, {f"{self.name}_id": record_id})

    def assign_record(self, session: Session, principal: Principal, record_id: int, dto: AssignRequest) -> Any:
        try:
            outcome = assignment_policy.assign(
                session,
                principal,
                self.model,
                self.repository.descriptor,
                record_id,
                dto.assigned_to,
                dto.assignment_notes,
            )
        except PolicyError as exc:
            raise policy_http_error(exc) from exc
        return self._to_read(outcome.record)

    def list_children(
        self,
        session: Session,
        principal: Principal,
        record_id: int,
        child_repository: BaseRepository,
        *criteria: Any,
    ) -> list[Any]:
        """Children of a visible parent, themselves filtered by the caller's visibility."""

        self.get_visible_or_404(session, principal, record_id)
        stmt = child_repository.base_query().where(*criteria)
        return list(child_repository.list_visible(session, principal, stmt))

    def _writable(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in payload.items() if key not in self.protected_fields}

    def _prepare_create(
        self,
        session: Session,
        principal: Principal,
        dto: BaseModel,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        self._validate_references(session, payload)
        return payload

    def _after_create(self, session: Session, principal: Principal, dto: BaseModel, record: Any) -> None:
        return None

    def _validate_references(self, session: Session, payload: dict[str, Any]) -> None:
        return None

    def _validate_merged(self, session: Session, record: Any, payload: dict[str, Any]) -> None:
        """Checks that only make sense on the record as it will look after a PATCH."""

        return None

    def _before_mutation(self, principal: Principal, record: Any, action: str) -> None:
        return None

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        return stmt

    def _to_read(self, record: Any) -> Any:
        return self.read_schema.model_validate(record)


class _AssignableOnCreateMixin:
    """Lets creators set ``assigned_to`` up front; only managers may hand a new record to someone else."""

    def _initial_assignee(self, session: Session, principal: Principal, assignee_id: int | None, label: str) -> int | None:
        if assignee_id is None:
            return None
        if assignee_id != principal.id and principal.role not in MANAGERIAL_ROLES:
            observe_permission_denied(resource=label.lower(), action="create_assigned")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied")
        if session.get(User, assignee_id) is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="User not found")
        return assignee_id


class LeadService(_AssignableOnCreateMixin, ScopedResourceService):
    repository = lead_repository
    read_schema = LeadRead

    def _prepare_create(self, session, principal, dto, payload):  # type: ignore[no-untyped-def]
        payload = super()._prepare_create(session, principal, dto, payload)
        payload["assigned_to"] = self._initial_assignee(session, principal, getattr(dto, "assigned_to", None), self.label)
        return payload

    def _validate_references(self, session: Session, payload: dict[str, Any]) -> None:
        ensure_reference(session, CRMCompany, payload.get("company_id"), "Company")
        ensure_reference(session, CRMContact, payload.get("contact_id"), "Contact")
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"])

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("status"):
            stmt = stmt.where(CRMLead.status == filters["status"])
        if filters.get("source"):
            stmt = stmt.where(CRMLead.source == filters["source"])
        if filters.get("assigned_to") is not None:
            stmt = stmt.where(CRMLead.assigned_to == filters["assigned_to"])
        if filters.get("team_id") is not None:
            stmt = stmt.where(CRMLead.team_id == filters["team_id"])
        if filters.get("unassigned"):
            stmt = stmt.where(CRMLead.assigned_to.is_(None))
        if filters.get("q"):
            pattern = f"%{filters['q']}%"
            stmt = stmt.where(
                or_(CRMLead.name.ilike(pattern), CRMLead.company_name.ilike(pattern), CRMLead.email.ilike(pattern))
            )
        return stmt

    def bulk_assign(self, session: Session, principal: Principal, dto: BulkAssignRequest) -> BulkAssignResponse:
        try:
            result = assignment_policy.bulk_assign(
                session,
                principal,
                CRMLead,
                self.repository.descriptor,
                dto.lead_ids,
                dto.assigned_to,
                dto.notes,
            )
        except PolicyError as exc:
            raise policy_http_error(exc) from exc
        return BulkAssignResponse(
            success=result.success,
            results=[BulkAssignItem(id=item.id, success=item.success, error=item.error) for item in result.results],
        )

    def list_activities(self, session: Session, principal: Principal, lead_id: int) -> list[ActivityRead]:
        rows = self.list_children(
            session,
            principal,
            lead_id,
            activity_repository,
            CRMActivity.related_to == "lead",
            CRMActivity.related_id == lead_id,
        )
        return [ActivityRead.model_validate(row) for row in rows]

    def list_opportunities(self, session: Session, principal: Principal, lead_id: int) -> list[OpportunityRead]:
        rows = self.list_children(session, principal, lead_id, opportunity_repository, CRMOpportunity.lead_id == lead_id)
        return [OpportunityRead.model_validate(row) for row in rows]

    def list_tasks(self, session: Session, principal: Principal, lead_id: int) -> list[TaskRead]:
        rows = self.list_children(
            session,
            principal,
            lead_id,
            task_repository,
            CRMTask.related_to == "lead",
            CRMTask.related_id == lead_id,
        )
        return [TaskRead.model_validate(row) for row in rows]


class ContactService(ScopedResourceService):
    repository = contact_repository
    read_schema = ContactRead

    def _validate_references(self, session: Session, payload: dict[str, Any]) -> None:
        ensure_reference(session, CRMCompany, payload.get("company_id"), "Company")
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"])

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("company_id") is not None:
            stmt = stmt.where(CRMContact.company_id == filters["company_id"])
        if filters.get("q"):
            pattern = f"%{filters['q']}%"
            stmt = stmt.where(
                or_(
                    CRMContact.first_name.ilike(pattern),
                    CRMContact.last_name.ilike(pattern),
                    CRMContact.email.ilike(pattern),
                )
            )
        return stmt

    def list_activities(self, session: Session, principal: Principal, contact_id: int) -> list[ActivityRead]:
        rows = self.list_children(
            session,
            principal,
            contact_id,
            activity_repository,
            CRMActivity.related_to == "contact",
            CRMActivity.related_id == contact_id,
        )
        return [ActivityRead.model_validate(row) for row in rows]

    def list_tasks(self, session: Session, principal: Principal, contact_id: int) -> list[TaskRead]:
        rows = self.list_children(
            session,
            principal,
            contact_id,
            task_repository,
            CRMTask.related_to == "contact",
            CRMTask.related_id == contact_id,
        )
        return [TaskRead.model_validate(row) for row in rows]

    def list_leads(self, session: Session, principal: Principal, contact_id: int) -> list[LeadRead]:
        rows = self.list_children(session, principal, contact_id, lead_repository, CRMLead.contact_id == contact_id)
        return [LeadRead.model_validate(row) for row in rows]

    def list_opportunities(self, session: Session, principal: Principal, contact_id: int) -> list[OpportunityRead]:
        rows = self.list_children(
            session,
            principal,
            contact_id,
            opportunity_repository,
            CRMOpportunity.contact_id == contact_id,
        )
        return [OpportunityRead.model_validate(row) for row in rows]


class CompanyService(ScopedResourceService):
    repository = company_repository
    read_schema = CompanyRead

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("industry"):
            stmt = stmt.where(CRMCompany.industry == filters["industry"])
        if filters.get("q"):
            stmt = stmt.where(CRMCompany.name.ilike(f"%{filters['q']}%"))
        return stmt

    def list_contacts(self, session: Session, principal: Principal, company_id: int) -> list[ContactRead]:
        rows = self.list_children(session, principal, company_id, contact_repository, CRMContact.company_id == company_id)
        return [ContactRead.model_validate(row) for row in rows]

    def list_opportunities(self, session: Session, principal: Principal, company_id: int) -> list[OpportunityRead]:
        rows = self.list_children(
            session,
            principal,
            company_id,
            opportunity_repository,
            CRMOpportunity.company_id == company_id,
        )
        return [OpportunityRead.model_validate(row) for row in rows]


class OpportunityService(_AssignableOnCreateMixin, ScopedResourceService):
    repository = opportunity_repository
    read_schema = OpportunityRead

    def _prepare_create(self, session, principal, dto, payload):  # type: ignore[no-untyped-def]
        payload = super()._prepare_create(session, principal, dto, payload)
        payload["assigned_to"] = self._initial_assignee(session, principal, getattr(dto, "assigned_to", None), self.label)
        return payload

    def _validate_references(self, session: Session, payload: dict[str, Any]) -> None:
        ensure_reference(session, CRMCompany, payload.get("company_id"), "Company")
        ensure_reference(session, CRMContact, payload.get("contact_id"), "Contact")
        ensure_reference(session, CRMLead, payload.get("lead_id"), "Lead")

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("stage"):
            stmt = stmt.where(CRMOpportunity.stage == filters["stage"])
        if filters.get("assigned_to") is not None:
            stmt = stmt.where(CRMOpportunity.assigned_to == filters["assigned_to"])
        if filters.get("company_id") is not None:
            stmt = stmt.where(CRMOpportunity.company_id == filters["company_id"])
        if filters.get("team_id") is not None:
            stmt = stmt.where(CRMOpportunity.team_id == filters["team_id"])
        if filters.get("q"):
            stmt = stmt.where(CRMOpportunity.name.ilike(f"%{filters['q']}%"))
        return stmt

    def list_activities(self, session: Session, principal: Principal, opportunity_id: int) -> list[ActivityRead]:
        rows = self.list_children(
            session,
            principal,
            opportunity_id,
            activity_repository,
            CRMActivity.related_to == "opportunity",
            CRMActivity.related_id == opportunity_id,
        )
        return [ActivityRead.model_validate(row) for row in rows]

    def list_tasks(self, session: Session, principal: Principal, opportunity_id: int) -> list[TaskRead]:
        rows = self.list_children(
            session,
            principal,
            opportunity_id,
            task_repository,
            CRMTask.related_to == "opportunity",
            CRMTask.related_id == opportunity_id,
        )
        return [TaskRead.model_validate(row) for row in rows]

    def list_quotations(self, session: Session, principal: Principal, opportunity_id: int) -> list[QuotationRead]:
        rows = self.list_children(
            session,
            principal,
            opportunity_id,
            quotation_repository,
            CRMQuotation.opportunity_id == opportunity_id,
        )
        return [QuotationRead.model_validate(row) for row in rows]


class _LineItemParentService(ScopedResourceService):
    item_model: Any
    item_schema: type[BaseModel]
    item_parent_field: str

    def _prepare_create(self, session, principal, dto, payload):  # type: ignore[no-untyped-def]
        payload = super()._prepare_create(session, principal, dto, payload)
        payload.pop("items", None)
        for item in getattr(dto, "items", []):
            ensure_reference(session, CRMProduct, item.product_id, "Product")
        return payload

    def _after_create(self, session: Session, principal: Principal, dto: BaseModel, record: Any) -> None:
        for item in getattr(dto, "items", []):
            session.add(self._build_item(record.id, item))

    def list_items(self, session: Session, principal: Principal, record_id: int) -> list[Any]:
        self.get_visible_or_404(session, principal, record_id)
        parent_column = getattr(self.item_model, self.item_parent_field)
        rows = session.scalars(
            select(self.item_model).where(parent_column == record_id).order_by(self.item_model.id.asc())
        ).all()
        return [self.item_schema.model_validate(row) for row in rows]

    def add_item(self, session: Session, principal: Principal, record_id: int, dto: LineItemCreate) -> Any:
        record = self.get_visible_or_404(session, principal, record_id)
        ensure_reference(session, CRMProduct, dto.product_id, "Product")
        with transaction_scope(session):
            item = self._build_item(record.id, dto)
            session.add(item)
        return self.item_schema.model_validate(item)

    def _build_item(self, record_id: int, dto: LineItemCreate) -> Any:
        return self.item_model(
            **{self.item_parent_field: record_id},
            product_id=dto.product_id,
            description=dto.description,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            tax=dto.tax,
            subtotal=dto.subtotal,
        )


class QuotationService(_LineItemParentService):
    repository = quotation_repository
    read_schema = QuotationRead
    item_model = CRMQuotationItem
    item_schema = QuotationItemRead
    item_parent_field = "quotation_id"

    def _validate_references(self, session: Session, payload: dict[str, Any]) -> None:
        ensure_reference(session, CRMOpportunity, payload.get("opportunity_id"), "Opportunity")

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("status"):
            stmt = stmt.where(CRMQuotation.status == filters["status"])
        if filters.get("opportunity_id") is not None:
            stmt = stmt.where(CRMQuotation.opportunity_id == filters["opportunity_id"])
        return stmt


class SalesOrderService(_LineItemParentService):
    repository = sales_order_repository
    read_schema = SalesOrderRead
    item_model = CRMSalesOrderItem
    item_schema = SalesOrderItemRead
    item_parent_field = "sales_order_id"

    def _prepare_create(self, session, principal, dto, payload):  # type: ignore[no-untyped-def]
        payload = super()._prepare_create(session, principal, dto, payload)
        if payload.get("order_date") is None:
            payload.pop("order_date", None)
        return payload

    def _validate_references(self, session: Session, payload: dict[str, Any]) -> None:
        ensure_reference(session, CRMQuotation, payload.get("quotation_id"), "Quotation")
        ensure_reference(session, CRMOpportunity, payload.get("opportunity_id"), "Opportunity")

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("status"):
            stmt = stmt.where(CRMSalesOrder.status == filters["status"])
        return stmt


class TaskService(_AssignableOnCreateMixin, ScopedResourceService):
    repository = task_repository
    read_schema = TaskRead

    def _prepare_create(self, session, principal, dto, payload):  # type: ignore[no-untyped-def]
        payload = super()._prepare_create(session, principal, dto, payload)
        payload["assigned_to"] = self._initial_assignee(session, principal, getattr(dto, "assigned_to", None), self.label)
        return payload

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("status"):
            stmt = stmt.where(CRMTask.status == filters["status"])
        if filters.get("priority"):
            stmt = stmt.where(CRMTask.priority == filters["priority"])
        if filters.get("assigned_to") is not None:
            stmt = stmt.where(CRMTask.assigned_to == filters["assigned_to"])
        if filters.get("related_to"):
            stmt = stmt.where(CRMTask.related_to == filters["related_to"])
        if filters.get("related_id") is not None:
            stmt = stmt.where(CRMTask.related_id == filters["related_id"])
        return stmt


class ActivityService(ScopedResourceService):
    repository = activity_repository
    read_schema = ActivityRead

    def _prepare_create(self, session, principal, dto, payload):  # type: ignore[no-untyped-def]
        if payload.get("type") in IMMUTABLE_ACTIVITY_TYPES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"activity type '{payload['type']}' is reserved",
            )
        return super()._prepare_create(session, principal, dto, payload)

    def update_record(self, session: Session, principal: Principal, record_id: int, dto: BaseModel) -> Any:
        requested_type = getattr(dto, "type", None)
        if requested_type in IMMUTABLE_ACTIVITY_TYPES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"activity type '{requested_type}' is reserved",
            )
        return super().update_record(session, principal, record_id, dto)

    def _before_mutation(self, principal: Principal, record: Any, action: str) -> None:
        if record.type in IMMUTABLE_ACTIVITY_TYPES:
            observe_permission_denied(resource=self.name, action=action)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Assignment activities are immutable")

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("type"):
            stmt = stmt.where(CRMActivity.type == filters["type"])
        if filters.get("related_to"):
            stmt = stmt.where(CRMActivity.related_to == filters["related_to"])
        if filters.get("related_id") is not None:
            stmt = stmt.where(CRMActivity.related_id == filters["related_id"])
        return stmt


class AppointmentService(ScopedResourceService):
    repository = appointment_repository
    read_schema = AppointmentRead
    attendee_models = {"user": (User, "User"), "lead": (CRMLead, "Lead"), "contact": (CRMContact, "Contact")}

    def _validate_references(self, session: Session, payload: dict[str, Any]) -> None:
        attendee_type = payload.get("attendee_type")
        if attendee_type is None or payload.get("attendee_id") is None:
            return
        model, label = self.attendee_models[attendee_type]
        ensure_reference(session, model, payload["attendee_id"], label)

    def _validate_merged(self, session: Session, record: Any, payload: dict[str, Any]) -> None:
        if "attendee_type" in payload or "attendee_id" in payload:
            # A lone attendee_type or attendee_id is resolved against the other stored half.
            self._validate_references(
                session,
                {
                    "attendee_type": payload.get("attendee_type", record.attendee_type),
                    "attendee_id": payload.get("attendee_id", record.attendee_id),
                },
            )
        if "start_time" in payload or "end_time" in payload:
            start_time = _as_utc(payload.get("start_time", record.start_time))
            end_time = _as_utc(payload.get("end_time", record.end_time))
            if end_time < start_time:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="end_time must not be before start_time",
                )

    def _apply_filters(self, stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
        if filters.get("starts_from") is not None:
            stmt = stmt.where(CRMAppointment.start_time >= filters["starts_from"])
        if filters.get("starts_to") is not None:
            stmt = stmt.where(CRMAppointment.start_time <= filters["starts_to"])
        return stmt

    def list_by_attendee(
        self,
        session: Session,
        principal: Principal,
        attendee_type: str,
        attendee_id: int,
    ) -> list[AppointmentRead]:
        stmt = self.repository.base_query().where(
            CRMAppointment.attendee_type == attendee_type,
            CRMAppointment.attendee_id == attendee_id,
        )
        rows = self.repository.list_visible(session, principal, stmt)
        return [AppointmentRead.model_validate(row) for row in rows]


class ProductService:
    """Shared catalog: readable by everyone, maintained by admins and sales managers."""

    def list_products(self, session: Session, active_only: bool = False) -> list[ProductRead]:
        stmt = select(CRMProduct).where(CRMProduct.deleted_at.is_(None))
        if active_only:
            stmt = stmt.where(CRMProduct.is_active.is_(True))
        rows = session.scalars(stmt.order_by(CRMProduct.name.asc(), CRMProduct.id.asc())).all()
        return [ProductRead.model_validate(row) for row in rows]

    def get_product(self, session: Session, product_id: int) -> ProductRead:
        return ProductRead.model_validate(self._load(session, product_id))

    def create_product(self, session: Session, principal: Principal, dto: ProductCreate) -> ProductRead:
        self._ensure_can_manage(principal, "create")
        with transaction_scope(session):
            product = CRMProduct(**dto.model_dump(), created_by=principal.id)
            session.add(product)
        return ProductRead.model_validate(product)

    def update_product(self, session: Session, principal: Principal, product_id: int, dto: ProductUpdate) -> ProductRead:
        self._ensure_can_manage(principal, "update")
        product = self._load(session, product_id)
        with transaction_scope(session):
            for field_name, value in dto.model_dump(exclude_unset=True).items():
                setattr(product, field_name, value)
        return ProductRead.model_validate(product)

    def soft_delete_product(self, session: Session, principal: Principal, product_id: int) -> None:
        self._ensure_can_manage(principal, "delete")
        product = self._load(session, product_id)
        with transaction_scope(session):
            product.deleted_at = utcnow()

    @staticmethod
    def _load(session: Session, product_id: int) -> CRMProduct:
        product = session.scalar(select(CRMProduct).where(CRMProduct.id == product_id, CRMProduct.deleted_at.is_(None)))
        if product is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
        return product

    @staticmethod
    def _ensure_can_manage(principal: Principal, action: str) -> None:
        if principal.role not in MANAGERIAL_ROLES:
            observe_permission_denied(resource="product", action=action)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied")


def visible_for_team(
    session: Session,
    principal: Principal,
    repository: BaseRepository,
    team_id: int,
) -> Sequence[Any]:
    """Records tagged with a reporting team, intersected with the caller's own visibility."""

    stmt = repository.base_query().where(repository.model.team_id == team_id)
    return repository.list_visible(session, principal, stmt)
