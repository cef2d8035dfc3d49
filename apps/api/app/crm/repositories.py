from __future__ import annotations

from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement

from app.crm.models import (
    CRMActivity,
    CRMAppointment,
    CRMCompany,
    CRMContact,
    CRMLead,
    CRMOpportunity,
    CRMQuotation,
    CRMSalesOrder,
    CRMTask,
)
from app.platform.security.context import Principal
from app.platform.security.repository import BaseRepository
from app.platform.security.visibility import ResourceDescriptor, VisibilityScope


LEAD = ResourceDescriptor(
    name="lead",
    label="Lead",
    owner_field="assigned_to",
    owner_nullable=True,
    assignee_field="assigned_to",
    status_field="status",
    reset_status="new",
)
OPPORTUNITY = ResourceDescriptor(
    name="opportunity",
    label="Opportunity",
    owner_field="assigned_to",
    owner_nullable=True,
    assignee_field="assigned_to",
)
CONTACT = ResourceDescriptor(name="contact", label="Contact", owner_field="created_by")
COMPANY = ResourceDescriptor(name="company", label="Company", owner_field="created_by")
QUOTATION = ResourceDescriptor(name="quotation", label="Quotation", owner_field="created_by")
SALES_ORDER = ResourceDescriptor(name="order", label="Order", owner_field="created_by")
TASK = ResourceDescriptor(name="task", label="Task", owner_field="created_by", assignee_field="assigned_to")
ACTIVITY = ResourceDescriptor(name="activity", label="Activity", owner_field="created_by")
APPOINTMENT = ResourceDescriptor(name="appointment", label="Appointment", owner_field="created_by")


class LeadRepository(BaseRepository):
    model = CRMLead
    descriptor = LEAD


class OpportunityRepository(BaseRepository):
    model = CRMOpportunity
    descriptor = OPPORTUNITY


class _ReferencedByPipelineRepository(BaseRepository):
    """Visible when owned, or when referenced by a lead or opportunity the caller can see."""

    reference_column: str

    def linked_clauses(
        self,
        session: Session,
        principal: Principal,
        scope: VisibilityScope,
    ) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        for repository in (lead_repository, opportunity_repository):
            column = getattr(repository.model, self.reference_column)
            referenced = select(column).where(
                repository.model.deleted_at.is_(None),
                column.is_not(None),
            )
            clauses.append(self.model.id.in_(repository.apply_scope_query(referenced, session, principal)))
        return clauses


class ContactRepository(_ReferencedByPipelineRepository):
    model = CRMContact
    descriptor = CONTACT
    reference_column = "contact_id"


class CompanyRepository(_ReferencedByPipelineRepository):
    model = CRMCompany
    descriptor = COMPANY
    reference_column = "company_id"


class QuotationRepository(BaseRepository):
    model = CRMQuotation
    descriptor = QUOTATION


class SalesOrderRepository(BaseRepository):
    model = CRMSalesOrder
    descriptor = SALES_ORDER


class TaskRepository(BaseRepository):
    model = CRMTask
    descriptor = TASK

    def linked_clauses(
        self,
        session: Session,
        principal: Principal,
        scope: VisibilityScope,
    ) -> list[ColumnElement[bool]]:
        # The assignee of a task always sees it.
        if not scope.user_ids:
            return []
        return [CRMTask.assigned_to.in_(sorted(scope.user_ids))]


class ActivityRepository(BaseRepository):
    model = CRMActivity
    descriptor = ACTIVITY


class AppointmentRepository(BaseRepository):
    model = CRMAppointment
    descriptor = APPOINTMENT

    def linked_clauses(
        self,
        session: Session,
        principal: Principal,
        scope: VisibilityScope,
    ) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if scope.user_ids:
            clauses.append(
                and_(
                    CRMAppointment.attendee_type == "user",
                    CRMAppointment.attendee_id.in_(sorted(scope.user_ids)),
                )
            )
        clauses.append(
            and_(
                CRMAppointment.attendee_type == "lead",
                CRMAppointment.attendee_id.in_(lead_repository.visible_ids(session, principal)),
            )
        )
        clauses.append(
            and_(
                CRMAppointment.attendee_type == "contact",
                CRMAppointment.attendee_id.in_(contact_repository.visible_ids(session, principal)),
            )
        )
        return clauses


lead_repository = LeadRepository()
opportunity_repository = OpportunityRepository()
contact_repository = ContactRepository()
company_repository = CompanyRepository()
quotation_repository = QuotationRepository()
sales_order_repository = SalesOrderRepository()
task_repository = TaskRepository()
activity_repository = ActivityRepository()
appointment_repository = AppointmentRepository()


REPOSITORIES: dict[str, Any] = {
    repository.descriptor.name: repository
    for repository in (
        lead_repository,
        opportunity_repository,
        contact_repository,
        company_repository,
        quotation_repository,
        sales_order_repository,
        task_repository,
        activity_repository,
        appointment_repository,
    )
}
