"""
Order Engine — Error taxonomy

Every error the engine raises on purpose derives from OrderEngineError and
carries the HTTP status the API boundary should use, plus a stable `code`
so clients never have to match on message text.
"""


class OrderEngineError(Exception):
    status_code: int = 500
    code: str = "order_engine_error"
    default_detail: str = "Order engine error."

    def __init__(self, detail: str | None = None, **context):
        self.detail = detail or self.default_detail
        self.context = {k: v for k, v in context.items() if v is not None}
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code, **self.context}


# ── Validation (400): rejected before any transaction opens ──────────────────
class ValidationError(OrderEngineError):
    status_code = 400
    code = "validation_error"
    default_detail = "Invalid request."


class EmptyItemsError(ValidationError):
    code = "empty_items"
    default_detail = "items are required"


class InvalidOrderTypeError(ValidationError):
    code = "invalid_order_type"
    default_detail = "invalid order_type"


class InvalidQuantityError(ValidationError):
    code = "invalid_quantity"
    default_detail = "quantity must be > 0"


class InvalidDiscountTypeError(ValidationError):
    code = "invalid_discount_type"
    default_detail = "invalid discount_type"


class InvalidDiscountValueError(ValidationError):
    code = "invalid_discount_value"
    default_detail = "invalid discount_value"


class CateringDateRequiredError(ValidationError):
    code = "catering_date_required"
    default_detail = "catering_date is required for CATERING orders"


class CateringCustomerRequiredError(ValidationError):
    code = "catering_customer_required"
    default_detail = "customer_id is required for CATERING orders"


class InvalidCateringDateError(ValidationError):
    code = "invalid_catering_date"
    default_detail = "invalid catering_date"


class InvalidCateringDpAmountError(ValidationError):
    code = "invalid_catering_dp_amount"
    default_detail = "invalid catering_dp_amount"


class InvalidPaymentMethodError(ValidationError):
    code = "invalid_payment_method"
    default_detail = "invalid payment_method"


class InvalidAmountError(ValidationError):
    code = "invalid_amount"
    default_detail = "amount must be positive"


class InvalidStatusError(ValidationError):
    code = "invalid_status"
    default_detail = "invalid status"


# ── Not found / reference (404) ──────────────────────────────────────────────
class NotFoundError(OrderEngineError):
    status_code = 404
    code = "not_found"
    default_detail = "Resource not found."


class OrderNotFoundError(NotFoundError):
    code = "order_not_found"
    default_detail = "order not found"


class OrderItemNotFoundError(NotFoundError):
    code = "order_item_not_found"
    default_detail = "item not found"


class CatalogReferenceError(NotFoundError):
    """A line names a product, variant or modifier the catalog cannot vouch for."""

    code = "catalog_reference_error"

    def __init__(self, detail: str | None = None, item_index: int | None = None,
                 modifier_index: int | None = None, **context):
        self.item_index = item_index
        self.modifier_index = modifier_index
        if detail is None:
            detail = self.default_detail
        if item_index is not None:
            where = f"items[{item_index}]"
            if modifier_index is not None:
                where += f".modifiers[{modifier_index}]"
            detail = f"{where}: {detail}"
        super().__init__(detail, item_index=item_index, modifier_index=modifier_index, **context)


class ProductNotFoundError(CatalogReferenceError):
    code = "product_not_found"
    default_detail = "product not found in outlet"


class VariantNotFoundError(CatalogReferenceError):
    code = "variant_not_found"
    default_detail = "variant not found"


class VariantMismatchError(CatalogReferenceError):
    code = "variant_mismatch"
    default_detail = "variant does not belong to product"


class ModifierNotFoundError(CatalogReferenceError):
    code = "modifier_not_found"
    default_detail = "modifier not found"


class ModifierMismatchError(CatalogReferenceError):
    code = "modifier_mismatch"
    default_detail = "modifier does not belong to product"


# ── Domain conflicts (409): deterministic, never retried ─────────────────────
class ConflictError(OrderEngineError):
    status_code = 409
    code = "conflict"
    default_detail = "Conflict."


class OrderNumberConflictError(ConflictError):
    code = "order_number_conflict"
    default_detail = "could not allocate an order number, please retry"


class StaleStatusError(ConflictError):
    code = "stale_status"
    default_detail = "order status changed, please retry"


class InvalidTransitionError(ConflictError):
    code = "invalid_transition"
    default_detail = "status transition not allowed"


class OrderClosedError(ConflictError):
    code = "order_closed"
    default_detail = "order is closed"


class OrderAlreadyPaidError(ConflictError):
    code = "order_already_paid"
    default_detail = "order is already fully paid"


class OverpaymentError(ConflictError):
    code = "overpayment"
    default_detail = "payment exceeds remaining balance"


class OrderNotPaidError(ConflictError):
    code = "order_not_paid"
    default_detail = "order cannot be completed before it is fully paid"


class OrderNotEditableError(ConflictError):
    code = "order_not_editable"
    default_detail = "items can only be changed while the order is NEW"


class LastItemError(ConflictError):
    code = "last_item"
    default_detail = "cannot remove the last item of an order"


class TotalBelowPaidError(ConflictError):
    code = "total_below_paid"
    default_detail = "change would lower the total below the amount already paid"


# ── Transient infrastructure (503): caller may retry ─────────────────────────
class TransientError(OrderEngineError):
    status_code = 503
    code = "transient_error"
    default_detail = "Temporary failure, please retry."


class LockTimeoutError(TransientError):
    code = "lock_timeout"
    default_detail = "order is busy, please retry"


class StoreUnavailableError(TransientError):
    code = "store_unavailable"
    default_detail = "database unavailable, please retry"
