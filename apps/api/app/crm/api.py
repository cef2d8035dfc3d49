from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.core.database import get_db
from app.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    ActivityUpdate,
    AppointmentCreate,
    AppointmentRead,
    AppointmentUpdate,
    AssignRequest,
    AttendeeType,
    BulkAssignRequest,
    BulkAssignResponse,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    LineItemCreate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityUpdate,
    ProductCreate,
    ProductRead,
    ProductUpdate,
    QuotationCreate,
    QuotationItemRead,
    QuotationRead,
    QuotationUpdate,
    SalesOrderCreate,
    SalesOrderItemRead,
    SalesOrderRead,
    SalesOrderUpdate,
    TaskCreate,
    TaskRead,
    TaskUpdate,
)
from app.crm.service import (
    ActivityService,
    AppointmentService,
    CompanyService,
    ContactService,
    LeadService,
    OpportunityService,
    ProductService,
    QuotationService,
    SalesOrderService,
    TaskService,
)
from app.platform.security.context import Principal
from app.platform.security.principal import get_current_principal

leads_router = APIRouter(prefix="/api/crm", tags=["crm.leads"])
contacts_router = APIRouter(prefix="/api/crm", tags=["crm.contacts"])
companies_router = APIRouter(prefix="/api/crm", tags=["crm.companies"])
opportunities_router = APIRouter(prefix="/api/crm", tags=["crm.opportunities"])
products_router = APIRouter(prefix="/api/crm", tags=["crm.products"])
quotations_router = APIRouter(prefix="/api/crm", tags=["crm.quotations"])
orders_router = APIRouter(prefix="/api/crm", tags=["crm.orders"])
tasks_router = APIRouter(prefix="/api/crm", tags=["crm.tasks"])
activities_router = APIRouter(prefix="/api/crm", tags=["crm.activities"])
appointments_router = APIRouter(prefix="/api/crm", tags=["crm.appointments"])
lead_service = LeadService()
contact_service = ContactService()
company_service = CompanyService()
opportunity_service = OpportunityService()
product_service = ProductService()
quotation_service = QuotationService()
sales_order_service = SalesOrderService()
task_service = TaskService()
activity_service = ActivityService()
appointment_service = AppointmentService()

DELETED = {"status": "deleted"}


@leads_router.get("/leads", response_model=list[LeadRead])
def list_leads(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    source: str | None = Query(default=None),
    assigned_to: int | None = Query(default=None),
    team_id: int | None = Query(default=None),
    unassigned: bool = Query(default=False),
    q: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[LeadRead] | JSONResponse:
    try:
        return lead_service.list_records(
            db,
            principal,
            filters={
                "status": status_filter,
                "source": source,
                "assigned_to": assigned_to,
                "team_id": team_id,
                "unassigned": unassigned,
                "q": q,
            },
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_list_failed")


@leads_router.post("/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_create_failed")


@leads_router.post("/leads/bulk-assign", response_model=BulkAssignResponse)
def bulk_assign_leads(
    request: Request,
    dto: BulkAssignRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> BulkAssignResponse | JSONResponse:
    try:
        return lead_service.bulk_assign(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_bulk_assign_failed")


@leads_router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_record(db, principal, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_get_failed")


@leads_router.patch("/leads/{lead_id}", response_model=LeadRead)
def patch_lead(
    request: Request,
    lead_id: int,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_record(db, principal, lead_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_update_failed")


@leads_router.delete("/leads/{lead_id}", response_model=None)
def delete_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        lead_service.soft_delete_record(db, principal, lead_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_delete_failed")


@leads_router.patch("/leads/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    request: Request,
    lead_id: int,
    dto: AssignRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.assign_record(db, principal, lead_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_assign_failed")


@leads_router.get("/leads/{lead_id}/activities", response_model=list[ActivityRead])
def list_lead_activities(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ActivityRead] | JSONResponse:
    try:
        return lead_service.list_activities(db, principal, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_activities_failed")


@leads_router.get("/leads/{lead_id}/opportunities", response_model=list[OpportunityRead])
def list_lead_opportunities(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[OpportunityRead] | JSONResponse:
    try:
        return lead_service.list_opportunities(db, principal, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_opportunities_failed")


@leads_router.get("/leads/{lead_id}/tasks", response_model=list[TaskRead])
def list_lead_tasks(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[TaskRead] | JSONResponse:
    try:
        return lead_service.list_tasks(db, principal, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_tasks_failed")


@contacts_router.get("/contacts", response_model=list[ContactRead])
def list_contacts(
    request: Request,
    company_id: int | None = Query(default=None),
    q: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ContactRead] | JSONResponse:
    try:
        return contact_service.list_records(
            db,
            principal,
            filters={"company_id": company_id, "q": q},
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_list_failed")


@contacts_router.post("/contacts", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_create_failed")


@contacts_router.get("/contacts/{contact_id}", response_model=ContactRead)
def get_contact(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.get_record(db, principal, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_get_failed")


@contacts_router.patch("/contacts/{contact_id}", response_model=ContactRead)
def patch_contact(
    request: Request,
    contact_id: int,
    dto: ContactUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.update_record(db, principal, contact_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_update_failed")


@contacts_router.delete("/contacts/{contact_id}", response_model=None)
def delete_contact(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        contact_service.soft_delete_record(db, principal, contact_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_delete_failed")


@contacts_router.get("/contacts/{contact_id}/activities", response_model=list[ActivityRead])
def list_contact_activities(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ActivityRead] | JSONResponse:
    try:
        return contact_service.list_activities(db, principal, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_activities_failed")


@contacts_router.get("/contacts/{contact_id}/tasks", response_model=list[TaskRead])
def list_contact_tasks(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[TaskRead] | JSONResponse:
    try:
        return contact_service.list_tasks(db, principal, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_tasks_failed")


@contacts_router.get("/contacts/{contact_id}/leads", response_model=list[LeadRead])
def list_contact_leads(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[LeadRead] | JSONResponse:
    try:
        return contact_service.list_leads(db, principal, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_leads_failed")


@contacts_router.get("/contacts/{contact_id}/opportunities", response_model=list[OpportunityRead])
def list_contact_opportunities(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[OpportunityRead] | JSONResponse:
    try:
        return contact_service.list_opportunities(db, principal, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_contact_opportunities_failed")


@companies_router.get("/companies", response_model=list[CompanyRead])
def list_companies(
    request: Request,
    industry: str | None = Query(default=None),
    q: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[CompanyRead] | JSONResponse:
    try:
        return company_service.list_records(
            db,
            principal,
            filters={"industry": industry, "q": q},
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_list_failed")


@companies_router.post("/companies", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(
    request: Request,
    dto: CompanyCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> CompanyRead | JSONResponse:
    try:
        return company_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_create_failed")


@companies_router.get("/companies/{company_id}", response_model=CompanyRead)
def get_company(
    request: Request,
    company_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> CompanyRead | JSONResponse:
    try:
        return company_service.get_record(db, principal, company_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_get_failed")


@companies_router.patch("/companies/{company_id}", response_model=CompanyRead)
def patch_company(
    request: Request,
    company_id: int,
    dto: CompanyUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> CompanyRead | JSONResponse:
    try:
        return company_service.update_record(db, principal, company_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_update_failed")


@companies_router.delete("/companies/{company_id}", response_model=None)
def delete_company(
    request: Request,
    company_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        company_service.soft_delete_record(db, principal, company_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_delete_failed")


@companies_router.get("/companies/{company_id}/contacts", response_model=list[ContactRead])
def list_company_contacts(
    request: Request,
    company_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ContactRead] | JSONResponse:
    try:
        return company_service.list_contacts(db, principal, company_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_contacts_failed")


@companies_router.get("/companies/{company_id}/opportunities", response_model=list[OpportunityRead])
def list_company_opportunities(
    request: Request,
    company_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[OpportunityRead] | JSONResponse:
    try:
        return company_service.list_opportunities(db, principal, company_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_company_opportunities_failed")


@opportunities_router.get("/opportunities", response_model=list[OpportunityRead])
def list_opportunities(
    request: Request,
    stage: str | None = Query(default=None),
    assigned_to: int | None = Query(default=None),
    company_id: int | None = Query(default=None),
    team_id: int | None = Query(default=None),
    q: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[OpportunityRead] | JSONResponse:
    try:
        return opportunity_service.list_records(
            db,
            principal,
            filters={
                "stage": stage,
                "assigned_to": assigned_to,
                "company_id": company_id,
                "team_id": team_id,
                "q": q,
            },
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_list_failed")


@opportunities_router.post("/opportunities", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    request: Request,
    dto: OpportunityCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_create_failed")


@opportunities_router.get("/opportunities/{opportunity_id}", response_model=OpportunityRead)
def get_opportunity(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.get_record(db, principal, opportunity_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_get_failed")


@opportunities_router.patch("/opportunities/{opportunity_id}", response_model=OpportunityRead)
def patch_opportunity(
    request: Request,
    opportunity_id: int,
    dto: OpportunityUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.update_record(db, principal, opportunity_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_update_failed")


@opportunities_router.delete("/opportunities/{opportunity_id}", response_model=None)
def delete_opportunity(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        opportunity_service.soft_delete_record(db, principal, opportunity_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_delete_failed")


@opportunities_router.patch("/opportunities/{opportunity_id}/assign", response_model=OpportunityRead)
def assign_opportunity(
    request: Request,
    opportunity_id: int,
    dto: AssignRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.assign_record(db, principal, opportunity_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_assign_failed")


@opportunities_router.get("/opportunities/{opportunity_id}/activities", response_model=list[ActivityRead])
def list_opportunity_activities(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ActivityRead] | JSONResponse:
    try:
        return opportunity_service.list_activities(db, principal, opportunity_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_activities_failed")


@opportunities_router.get("/opportunities/{opportunity_id}/tasks", response_model=list[TaskRead])
def list_opportunity_tasks(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[TaskRead] | JSONResponse:
    try:
        return opportunity_service.list_tasks(db, principal, opportunity_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_tasks_failed")


@opportunities_router.get("/opportunities/{opportunity_id}/quotations", response_model=list[QuotationRead])
def list_opportunity_quotations(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[QuotationRead] | JSONResponse:
    try:
        return opportunity_service.list_quotations(db, principal, opportunity_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_opportunity_quotations_failed")


@products_router.get("/products", response_model=list[ProductRead])
def list_products(
    request: Request,
    active_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ProductRead] | JSONResponse:
    try:
        return product_service.list_products(db, active_only=active_only)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_product_list_failed")


@products_router.post("/products", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    request: Request,
    dto: ProductCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ProductRead | JSONResponse:
    try:
        return product_service.create_product(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_product_create_failed")


@products_router.get("/products/{product_id}", response_model=ProductRead)
def get_product(
    request: Request,
    product_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ProductRead | JSONResponse:
    try:
        return product_service.get_product(db, product_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_product_get_failed")


@products_router.patch("/products/{product_id}", response_model=ProductRead)
def patch_product(
    request: Request,
    product_id: int,
    dto: ProductUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ProductRead | JSONResponse:
    try:
        return product_service.update_product(db, principal, product_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_product_update_failed")


@products_router.delete("/products/{product_id}", response_model=None)
def delete_product(
    request: Request,
    product_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        product_service.soft_delete_product(db, principal, product_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_product_delete_failed")


@quotations_router.get("/quotations", response_model=list[QuotationRead])
def list_quotations(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    opportunity_id: int | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[QuotationRead] | JSONResponse:
    try:
        return quotation_service.list_records(
            db,
            principal,
            filters={"status": status_filter, "opportunity_id": opportunity_id},
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quotation_list_failed")


@quotations_router.post("/quotations", response_model=QuotationRead, status_code=status.HTTP_201_CREATED)
def create_quotation(
    request: Request,
    dto: QuotationCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> QuotationRead | JSONResponse:
    try:
        return quotation_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quotation_create_failed")


@quotations_router.get("/quotations/{quotation_id}", response_model=QuotationRead)
def get_quotation(
    request: Request,
    quotation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> QuotationRead | JSONResponse:
    try:
        return quotation_service.get_record(db, principal, quotation_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quotation_get_failed")


@quotations_router.patch("/quotations/{quotation_id}", response_model=QuotationRead)
def patch_quotation(
    request: Request,
    quotation_id: int,
    dto: QuotationUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> QuotationRead | JSONResponse:
    try:
        return quotation_service.update_record(db, principal, quotation_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quotation_update_failed")


@quotations_router.delete("/quotations/{quotation_id}", response_model=None)
def delete_quotation(
    request: Request,
    quotation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        quotation_service.soft_delete_record(db, principal, quotation_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quotation_delete_failed")


@quotations_router.get("/quotations/{quotation_id}/items", response_model=list[QuotationItemRead])
def list_quotation_items(
    request: Request,
    quotation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[QuotationItemRead] | JSONResponse:
    try:
        return quotation_service.list_items(db, principal, quotation_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quotation_items_failed")


@quotations_router.post(
    "/quotations/{quotation_id}/items",
    response_model=QuotationItemRead,
    status_code=status.HTTP_201_CREATED,
)
def add_quotation_item(
    request: Request,
    quotation_id: int,
    dto: LineItemCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> QuotationItemRead | JSONResponse:
    try:
        return quotation_service.add_item(db, principal, quotation_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_quotation_item_create_failed")


@orders_router.get("/orders", response_model=list[SalesOrderRead])
def list_orders(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[SalesOrderRead] | JSONResponse:
    try:
        return sales_order_service.list_records(
            db,
            principal,
            filters={"status": status_filter},
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_order_list_failed")


@orders_router.post("/orders", response_model=SalesOrderRead, status_code=status.HTTP_201_CREATED)
def create_order(
    request: Request,
    dto: SalesOrderCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> SalesOrderRead | JSONResponse:
    try:
        return sales_order_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_order_create_failed")


@orders_router.get("/orders/{order_id}", response_model=SalesOrderRead)
def get_order(
    request: Request,
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> SalesOrderRead | JSONResponse:
    try:
        return sales_order_service.get_record(db, principal, order_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_order_get_failed")


@orders_router.patch("/orders/{order_id}", response_model=SalesOrderRead)
def patch_order(
    request: Request,
    order_id: int,
    dto: SalesOrderUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> SalesOrderRead | JSONResponse:
    try:
        return sales_order_service.update_record(db, principal, order_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_order_update_failed")


@orders_router.delete("/orders/{order_id}", response_model=None)
def delete_order(
    request: Request,
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        sales_order_service.soft_delete_record(db, principal, order_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_order_delete_failed")


@orders_router.get("/orders/{order_id}/items", response_model=list[SalesOrderItemRead])
def list_order_items(
    request: Request,
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[SalesOrderItemRead] | JSONResponse:
    try:
        return sales_order_service.list_items(db, principal, order_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_order_items_failed")


@orders_router.post("/orders/{order_id}/items", response_model=SalesOrderItemRead, status_code=status.HTTP_201_CREATED)
def add_order_item(
    request: Request,
    order_id: int,
    dto: LineItemCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> SalesOrderItemRead | JSONResponse:
    try:
        return sales_order_service.add_item(db, principal, order_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_order_item_create_failed")


@tasks_router.get("/tasks", response_model=list[TaskRead])
def list_tasks(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    priority: str | None = Query(default=None),
    assigned_to: int | None = Query(default=None),
    related_to: str | None = Query(default=None),
    related_id: int | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[TaskRead] | JSONResponse:
    try:
        return task_service.list_records(
            db,
            principal,
            filters={
                "status": status_filter,
                "priority": priority,
                "assigned_to": assigned_to,
                "related_to": related_to,
                "related_id": related_id,
            },
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_list_failed")


@tasks_router.post("/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TaskRead | JSONResponse:
    try:
        return task_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_create_failed")


@tasks_router.get("/tasks/{task_id}", response_model=TaskRead)
def get_task(
    request: Request,
    task_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TaskRead | JSONResponse:
    try:
        return task_service.get_record(db, principal, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_get_failed")


@tasks_router.patch("/tasks/{task_id}", response_model=TaskRead)
def patch_task(
    request: Request,
    task_id: int,
    dto: TaskUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TaskRead | JSONResponse:
    try:
        return task_service.update_record(db, principal, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_update_failed")


@tasks_router.delete("/tasks/{task_id}", response_model=None)
def delete_task(
    request: Request,
    task_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        task_service.soft_delete_record(db, principal, task_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_delete_failed")


@tasks_router.patch("/tasks/{task_id}/assign", response_model=TaskRead)
def assign_task(
    request: Request,
    task_id: int,
    dto: AssignRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TaskRead | JSONResponse:
    try:
        return task_service.assign_record(db, principal, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_task_assign_failed")


@activities_router.get("/activities", response_model=list[ActivityRead])
def list_activities(
    request: Request,
    activity_type: str | None = Query(default=None, alias="type"),
    related_to: str | None = Query(default=None),
    related_id: int | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ActivityRead] | JSONResponse:
    try:
        return activity_service.list_records(
            db,
            principal,
            filters={"type": activity_type, "related_to": related_to, "related_id": related_id},
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_activity_list_failed")


@activities_router.post("/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(
    request: Request,
    dto: ActivityCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ActivityRead | JSONResponse:
    try:
        return activity_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_activity_create_failed")


@activities_router.get("/activities/{activity_id}", response_model=ActivityRead)
def get_activity(
    request: Request,
    activity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ActivityRead | JSONResponse:
    try:
        return activity_service.get_record(db, principal, activity_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_activity_get_failed")


@activities_router.patch("/activities/{activity_id}", response_model=ActivityRead)
def patch_activity(
    request: Request,
    activity_id: int,
    dto: ActivityUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ActivityRead | JSONResponse:
    try:
        return activity_service.update_record(db, principal, activity_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_activity_update_failed")


@activities_router.delete("/activities/{activity_id}", response_model=None)
def delete_activity(
    request: Request,
    activity_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        activity_service.soft_delete_record(db, principal, activity_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_activity_delete_failed")


@appointments_router.get("/appointments", response_model=list[AppointmentRead])
def list_appointments(
    request: Request,
    starts_from: datetime | None = Query(default=None),
    starts_to: datetime | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[AppointmentRead] | JSONResponse:
    try:
        return appointment_service.list_records(
            db,
            principal,
            filters={"starts_from": starts_from, "starts_to": starts_to},
            cursor=cursor,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_appointment_list_failed")


@appointments_router.post("/appointments", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def create_appointment(
    request: Request,
    dto: AppointmentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> AppointmentRead | JSONResponse:
    try:
        return appointment_service.create_record(db, principal, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_appointment_create_failed")


@appointments_router.get(
    "/appointments/by-attendee/{attendee_type}/{attendee_id}",
    response_model=list[AppointmentRead],
)
def list_appointments_by_attendee(
    request: Request,
    attendee_type: AttendeeType,
    attendee_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[AppointmentRead] | JSONResponse:
    try:
        return appointment_service.list_by_attendee(db, principal, attendee_type, attendee_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_appointment_list_failed")


@appointments_router.get("/appointments/{appointment_id}", response_model=AppointmentRead)
def get_appointment(
    request: Request,
    appointment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> AppointmentRead | JSONResponse:
    try:
        return appointment_service.get_record(db, principal, appointment_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_appointment_get_failed")


@appointments_router.patch("/appointments/{appointment_id}", response_model=AppointmentRead)
def patch_appointment(
    request: Request,
    appointment_id: int,
    dto: AppointmentUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> AppointmentRead | JSONResponse:
    try:
        return appointment_service.update_record(db, principal, appointment_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_appointment_update_failed")


@appointments_router.delete("/appointments/{appointment_id}", response_model=None)
def delete_appointment(
    request: Request,
    appointment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> dict[str, str] | JSONResponse:
    try:
        appointment_service.soft_delete_record(db, principal, appointment_id)
        return DELETED
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_appointment_delete_failed")


routers = [
    leads_router,
    contacts_router,
    companies_router,
    opportunities_router,
    products_router,
    quotations_router,
    orders_router,
    tasks_router,
    activities_router,
    appointments_router,
]
