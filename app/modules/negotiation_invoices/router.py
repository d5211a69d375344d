"""
Negotiation invoice endpoints

Listing and previewing payout invoices for redemptions of platform issued gift
cards, and issuing them with the rendered PDF attached.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, UploadFile, status

from app.dependencies.dbDependecies import async_db_dependency
from app.dependencies.listingDependencies import list_params_dependency
from app.modules.negotiation_invoices.schemas import (
    NegotiationInvoiceList, NegotiationInvoicePdfData, NegotiationInvoiceSummary, RedemptionsOfInvoice
)
from app.modules.negotiation_invoices.service import NegotiationInvoiceService
from app.modules.settlements.workflow import SettlementRequest

router = APIRouter(prefix="/negotiation-invoices", tags=["Negotiation invoices"])


@router.get("/", response_model=NegotiationInvoiceList)
async def list_negotiation_invoices(
    db: async_db_dependency,
    params: list_params_dependency,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...)
):
    """
    Redeemed totals per shop and invoice for platform issued cards.

    Rows without an invoice number are redemptions that still wait for a payout.
    """
    service = NegotiationInvoiceService(db)
    return await service.list_for_admin(
        start_date, end_date,
        page=params.page,
        size=params.size,
        sort_by=params.sort_by,
        sort_order=params.sort_order,
        search_value=params.search_value,
        column_filters=params.column_filters
    )


@router.get("/shops/{shop_id}", response_model=NegotiationInvoiceList)
async def list_shop_negotiation_invoices(
    shop_id: UUID,
    db: async_db_dependency,
    params: list_params_dependency,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...)
):
    service = NegotiationInvoiceService(db)
    return await service.list_for_shop(
        shop_id, start_date, end_date,
        page=params.page,
        size=params.size,
        sort_by=params.sort_by,
        sort_order=params.sort_order,
        search_value=params.search_value,
        column_filters=params.column_filters
    )


@router.get("/shops/{shop_id}/redemptions", response_model=RedemptionsOfInvoice)
async def get_redemptions_of_invoice(
    shop_id: UUID,
    db: async_db_dependency,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...)
):
    """Unbilled redemptions the next invoice for this shop would cover"""
    service = NegotiationInvoiceService(db)
    return await service.get_redemptions_of_invoice(shop_id, start_date, end_date)


@router.get("/shops/{shop_id}/pdf-data", response_model=NegotiationInvoicePdfData)
async def get_invoice_pdf_data(
    shop_id: UUID,
    db: async_db_dependency,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    timezone: Optional[str] = Query(None, description="IANA timezone for printed dates")
):
    service = NegotiationInvoiceService(db)
    return await service.get_invoice_pdf_data(shop_id, start_date, end_date, tz_name=timezone)


@router.post("/", response_model=NegotiationInvoiceSummary, status_code=status.HTTP_201_CREATED)
async def create_negotiation_invoice(
    db: async_db_dependency,
    shop_id: UUID = Form(...),
    invoice_number: str = Form(...),
    start_date: Optional[datetime] = Form(None),
    end_date: Optional[datetime] = Form(None),
    file: Optional[UploadFile] = File(None)
):
    """
    Issue a payout invoice.

    ``invoice_number`` must be the number returned by the pdf-data endpoint;
    a stale number is rejected with 409 and the client has to fetch again.
    """
    request = SettlementRequest(
        shop_id=shop_id,
        start_date=start_date,
        end_date=end_date,
        invoice_number=invoice_number,
        file_content=await file.read() if file else None,
        content_type=(file.content_type if file else None) or "application/pdf"
    )
    service = NegotiationInvoiceService(db)
    return await service.create(request)
