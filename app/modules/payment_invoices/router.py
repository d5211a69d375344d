from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, UploadFile, status

from app.dependencies.dbDependecies import async_db_dependency
from app.dependencies.listingDependencies import list_params_dependency
from app.modules.payment_invoices.schemas import (
    PaymentInvoiceList, PaymentInvoicePdfData, PaymentInvoiceSummary, PurchasesOfInvoice
)
from app.modules.payment_invoices.service import PaymentInvoiceService
from app.modules.settlements.workflow import SettlementRequest

router = APIRouter(prefix="/payment-invoices", tags=["Payment invoices"])


@router.get("/", response_model=PaymentInvoiceList)
async def list_payment_invoices(
    db: async_db_dependency,
    params: list_params_dependency,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...)
):
    """Purchase totals of all partner shops, one row per issued invoice plus one for unbilled purchases"""
    service = PaymentInvoiceService(db)
    return await service.list_for_admin(
        start_date, end_date,
        page=params.page,
        size=params.size,
        sort_by=params.sort_by,
        sort_order=params.sort_order,
        search_value=params.search_value,
        column_filters=params.column_filters
    )


@router.get("/shops/{shop_id}", response_model=PaymentInvoiceList)
async def list_shop_payment_invoices(
    shop_id: UUID,
    db: async_db_dependency,
    params: list_params_dependency,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...)
):
    service = PaymentInvoiceService(db)
    return await service.list_for_shop(
        shop_id, start_date, end_date,
        page=params.page,
        size=params.size,
        sort_by=params.sort_by,
        sort_order=params.sort_order,
        search_value=params.search_value,
        column_filters=params.column_filters
    )


@router.get("/shops/{shop_id}/purchases", response_model=PurchasesOfInvoice)
async def get_purchases_of_invoice(
    shop_id: UUID,
    db: async_db_dependency,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...)
):
    """Unbilled purchases and refunds the next fee invoice would cover"""
    service = PaymentInvoiceService(db)
    return await service.get_purchases_of_invoice(shop_id, start_date, end_date)


@router.get("/shops/{shop_id}/pdf-data", response_model=PaymentInvoicePdfData)
async def get_invoice_pdf_data(
    shop_id: UUID,
    db: async_db_dependency,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    timezone: Optional[str] = Query(None, description="IANA timezone for printed dates")
):
    service = PaymentInvoiceService(db)
    return await service.get_invoice_pdf_data(shop_id, start_date, end_date, tz_name=timezone)


@router.post("/", response_model=PaymentInvoiceSummary, status_code=status.HTTP_201_CREATED)
async def create_payment_invoice(
    db: async_db_dependency,
    shop_id: UUID = Form(...),
    invoice_number: str = Form(...),
    start_date: Optional[datetime] = Form(None),
    end_date: Optional[datetime] = Form(None),
    file: Optional[UploadFile] = File(None)
):
    """
    Issue a fee invoice.

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
    service = PaymentInvoiceService(db)
    return await service.create(request)
