class ReportError(RuntimeError):
    status_code = 500
    error = "InternalServerError"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ReportValidationError(ReportError):
    status_code = 400
    error = "BadRequest"


class ReportNotFoundError(ReportError):
    status_code = 404
    error = "NotFound"


class DuplicateReceiptError(ReportError):
    status_code = 409
    error = "Conflict"

    def __init__(self, receipt_no: str | None):
        super().__init__(
            "Report already exists for this receipt number",
            details={"code": 11000, "field": "receiptNo", "receiptNo": receipt_no},
        )


class DuplicateSequenceError(ReportError):
    """Report id still colliding after every allowed attempt."""
