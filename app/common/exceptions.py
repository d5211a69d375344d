"""
Domain exceptions for the settlement services.

Every error carries a human readable message, an HTTP-style status code and a
short machine code. The API boundary renders them as ``{"message", "code"}``
pairs (see ``app.main``), so services raise these instead of HTTPException.
"""
from typing import Optional


class SettlementError(Exception):
    """Base exception for settlement services."""
    status_code = 500
    code = "settlement_error"
    default_message = "Settlement operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ===== VALIDATION =====

class ValidationError(SettlementError):
    """Malformed or missing request fields. User-correctable."""
    status_code = 422
    code = "validation_error"
    default_message = "Request validation failed"


class InvoiceFileRequired(ValidationError):
    code = "invoice_file_required"
    default_message = "Invoice file is required"


class DateRangeRequired(ValidationError):
    code = "date_range_required"
    default_message = "Fields are required [start_date, end_date]"


class UnknownColumnError(ValidationError):
    """Raised when a filter or sort column id is not in the column table."""
    code = "unknown_column"
    default_message = "Unknown column"


class InvalidRedemptionShop(ValidationError):
    code = "invalid_redemption_shop"
    default_message = "Admin issued gift cards cannot be redeemed at the admin studio"


class GiftCardModeMismatch(ValidationError):
    code = "giftcard_mode_mismatch"
    default_message = "Gift card mode does not match the studio mode"


# ===== NOT FOUND =====

class NotFoundError(SettlementError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class ShopNotFound(NotFoundError):
    code = "shop_not_found"
    default_message = "Shop not found"


class GiftCardNotFound(NotFoundError):
    code = "giftcard_not_found"
    default_message = "Gift card not found"


class RedemptionNotFound(NotFoundError):
    code = "redemption_not_found"
    default_message = "Redemption not found"


class NoRedemptionsForPeriod(NotFoundError):
    code = "redemptions_not_found_for_invoice"
    default_message = "No redemptions found to generate invoice"


class NoPurchasesForPeriod(NotFoundError):
    code = "purchases_not_found_for_invoice"
    default_message = "No purchases found to generate invoice"


# ===== CONFLICT =====

class ConflictError(SettlementError):
    """Caller state is stale. Re-fetch and retry with fresh data."""
    status_code = 409
    code = "conflict"
    default_message = "Conflicting state"


class InvoiceNumberMismatch(ConflictError):
    code = "invoice_number_mismatch"
    default_message = "Invoice number does not match. Please try again to fetch data with latest invoice number"


class DuplicateInvoiceNumber(ConflictError):
    code = "invoice_number_exists"
    default_message = "Invoice number already exists. Please try again"


class RedemptionsAlreadyClaimed(ConflictError):
    code = "redemptions_already_claimed"
    default_message = "Some redemptions were invoiced concurrently. Please try again"


class RedemptionAlreadyInvoiced(ConflictError):
    code = "redemption_already_invoiced"
    default_message = "Redemption amount and redeem at shop with negotiation invoice cannot be updated"


class RedemptionShopChangeNotAllowed(ConflictError):
    code = "redemption_shop_change_not_allowed"
    default_message = "Redeem at shop can only be updated on admin issued gift cards"


class GiftCardAmountExceeded(ConflictError):
    code = "giftcard_amount_exceeded"
    default_message = "Redeem amount exceeds the available gift card amount"


# ===== OPERATOR / INFRASTRUCTURE =====

class ConfigurationError(SettlementError):
    """Persisted data is incomplete; an operator has to fix it."""
    status_code = 500
    code = "configuration_error"
    default_message = "Platform configuration is incomplete"


class StorageError(SettlementError):
    """Blob store failure. Nothing was committed, so a retry is safe."""
    status_code = 502
    code = "storage_error"
    default_message = "File storage service unavailable"


class StorageUploadFailed(StorageError):
    code = "storage_upload_failed"
    default_message = "Invoice file could not be uploaded"


class InternalError(SettlementError):
    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"
