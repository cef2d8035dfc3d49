from app.teams.models import Team, User
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

__all__ = [
	"Team",
	"User",
	"CRMActivity",
	"CRMAppointment",
	"CRMCompany",
	"CRMContact",
	"CRMLead",
	"CRMOpportunity",
	"CRMProduct",
	"CRMQuotation",
	"CRMQuotationItem",
	"CRMSalesOrder",
	"CRMSalesOrderItem",
	"CRMTask",
]
