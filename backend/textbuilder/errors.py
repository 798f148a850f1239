"""TextBuilder domain errors.

Mapped to HTTP responses by the exception handlers in server.py.
"""


class TextBuilderError(Exception):
    """Base class for TextBuilder errors."""
    status_code = 500


class AccountNotFoundError(TextBuilderError):
    """Account does not exist."""
    status_code = 404

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("Account not found")


class InsufficientCreditsError(TextBuilderError):
    """Available credits do not cover the requested cost."""
    status_code = 400

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Not enough credits. Need {required}, have {available}")


class GenerationError(TextBuilderError):
    """External generation provider failed.

    The message is logged; callers only see a generic error.
    """
    status_code = 500


class PaymentError(TextBuilderError):
    """Payment could not be completed."""
    status_code = 400


class JobNotFoundError(TextBuilderError):
    status_code = 404

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Job not found")


class JobStateError(TextBuilderError):
    """Generation job is in a state that does not allow the operation."""
    status_code = 400

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job cannot be cancelled in {status} state")
