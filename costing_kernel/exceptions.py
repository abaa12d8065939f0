"""
Typed exception hierarchy for the costing kernel.

Every error has its own class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe), and carries its context as
attributes so that the structured log formatter and API layers can surface
it without parsing strings.

    CostingKernelError (base)
    |
    +-- LotError
    |   +-- LotNotFoundError
    |   +-- InvalidLotError
    |   +-- LotOverdrawnError
    |   +-- LotProductMismatchError
    |   +-- NoAvailableLotsError
    |
    +-- SelectionError
    |   +-- InvalidQuantityError
    |   +-- SelectionNotStartedError
    |   +-- SelectionModeError
    |   +-- SelectionFinalizedError
    |   +-- ProductMismatchError
    |   +-- LotSelectionRefusedError
    |
    +-- CurrencyError
        +-- InvalidCurrencyError
        +-- CurrencyMismatchError

Category   | Code                       | When Raised
-----------|----------------------------|------------------------------------------
Lot        | LOT_NOT_FOUND              | Lot id is not part of the session snapshot
           | INVALID_LOT                | Negative remaining quantity or unit cost
           | LOT_OVERDRAWN              | Selection asks for more than a lot holds
           | LOT_PRODUCT_MISMATCH       | Lot belongs to another product
           | NO_AVAILABLE_LOTS          | Product has no lot with stock left
           | INSUFFICIENT_STOCK         | Automatic costing cannot cover the line
-----------|----------------------------|------------------------------------------
Selection  | INVALID_QUANTITY           | Negative requested quantity
           | SELECTION_NOT_STARTED      | Controller used before start()
           | SELECTION_MODE             | Operation not valid in the current mode
           | SELECTION_FINALIZED        | Mutation after a successful finalize()
           | PRODUCT_MISMATCH           | Costing attached to a line of another product
           | LOT_SELECTION_REFUSED      | Commit of a selection violating invariants
-----------|----------------------------|------------------------------------------
Currency   | INVALID_CURRENCY           | Unknown ISO 4217 code
           | CURRENCY_MISMATCH          | Lots or allocation sets in mixed currencies

Invariant violations found by ``finalize()`` are NOT raised; they are
returned as a structured refusal. ``LotSelectionRefusedError`` exists for
callers that commit a selection and want a single failure path.
"""


class CostingKernelError(Exception):
    """Base exception for all costing kernel errors."""

    code: str = "COSTING_KERNEL_ERROR"


# Lot-related exceptions


class LotError(CostingKernelError):
    """Base exception for lot-related errors."""

    code: str = "LOT_ERROR"


class LotNotFoundError(LotError):
    """Lot id is not among the lots of the current snapshot."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class InvalidLotError(LotError):
    """Lot data violates the StockLot invariants."""

    code: str = "INVALID_LOT"

    def __init__(self, lot_id: str, reason: str):
        self.lot_id = lot_id
        self.reason = reason
        super().__init__(f"Invalid lot {lot_id}: {reason}")


class LotOverdrawnError(LotError):
    """A selection asks for more than the lot's remaining quantity."""

    code: str = "LOT_OVERDRAWN"

    def __init__(self, lot_id: str, lot_number: str, requested: str, remaining: str):
        self.lot_id = lot_id
        self.lot_number = lot_number
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Insufficient stock in lot {lot_number}: "
            f"{remaining} available, {requested} requested"
        )


class LotProductMismatchError(LotError):
    """A lot of another product was passed into a single-product allocation."""

    code: str = "LOT_PRODUCT_MISMATCH"

    def __init__(self, lot_id: str, expected_product_id: str, actual_product_id: str):
        self.lot_id = lot_id
        self.expected_product_id = expected_product_id
        self.actual_product_id = actual_product_id
        super().__init__(
            f"Lot {lot_id} belongs to product {actual_product_id}, "
            f"expected {expected_product_id}"
        )


class NoAvailableLotsError(LotError):
    """No lot of the product has remaining stock; selection cannot be opened."""

    code: str = "NO_AVAILABLE_LOTS"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"No available lots for product {product_id}")


# Selection-related exceptions


class SelectionError(CostingKernelError):
    """Base exception for lot selection session errors."""

    code: str = "SELECTION_ERROR"


class InvalidQuantityError(SelectionError):
    """Requested quantity is negative."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: str):
        self.quantity = quantity
        super().__init__(f"Requested quantity cannot be negative: {quantity}")


class SelectionNotStartedError(SelectionError):
    """Controller operation called before start()."""

    code: str = "SELECTION_NOT_STARTED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Cannot {operation}: lot selection has not been started")


class SelectionModeError(SelectionError):
    """Operation is not valid in the current selection mode."""

    code: str = "SELECTION_MODE"

    def __init__(self, operation: str, mode: str):
        self.operation = operation
        self.mode = mode
        super().__init__(f"Cannot {operation} in {mode} mode")


class SelectionFinalizedError(SelectionError):
    """Selection was already finalized; start a new one to change it."""

    code: str = "SELECTION_FINALIZED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Cannot {operation}: lot selection is already finalized")


class ProductMismatchError(SelectionError):
    """Costing was computed for a different product or quantity than the line."""

    code: str = "PRODUCT_MISMATCH"

    def __init__(self, line_id: str, line_product_id: str, costing_product_id: str):
        self.line_id = line_id
        self.line_product_id = line_product_id
        self.costing_product_id = costing_product_id
        super().__init__(
            f"Costing for product {costing_product_id} cannot be attached to "
            f"order line {line_id} of product {line_product_id}"
        )


class LotSelectionRefusedError(SelectionError):
    """Commit of a lot selection whose invariants do not hold."""

    code: str = "LOT_SELECTION_REFUSED"

    def __init__(self, violations: tuple):
        self.violations = violations
        self.violation_kinds = [v.kind.value for v in violations]
        super().__init__(
            "Lot selection refused: " + "; ".join(v.message for v in violations)
        )


# Currency-related exceptions


class CurrencyError(CostingKernelError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Invalid ISO 4217 currency code provided."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class CurrencyMismatchError(CurrencyError):
    """Attempted operation on mismatched currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str):
        self.currency1 = currency1
        self.currency2 = currency2
        super().__init__(f"Currency mismatch: {currency1} vs {currency2}")
