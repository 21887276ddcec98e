class VisitExportError(Exception):
    """Base error for failures reported back to the caller."""

    code = "error"
    status = 500

    def __init__(self, message=None, code=None, status=None):
        super().__init__(message or code or self.code)
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status

    @property
    def message(self):
        return str(self)


class ConfigurationError(VisitExportError):
    """Raised when required settings are missing."""

    code = "configuration_error"


class UnauthorizedError(VisitExportError):
    code = "unauthorized"
    status = 401


class ForbiddenError(VisitExportError):
    code = "forbidden"
    status = 403


class BadRequestError(VisitExportError):
    code = "bad_request"
    status = 400


class NotFoundError(VisitExportError):
    code = "not_found"
    status = 404


class MissingAttachmentError(VisitExportError):
    code = "missing_attachment"
    status = 400


class AttachmentUrlNotSupportedError(VisitExportError):
    code = "attachment_url_not_supported"
    status = 400


class ContractViolationError(VisitExportError):
    """A stored reference points at a host we do not know how to read."""

    code = "contract_violation"
    status = 400


class TransientError(VisitExportError):
    """Network failure worth retrying (timeouts, 502/503/504, worker limits)."""

    code = "transient_error"
    status = 503

    def __init__(self, message=None, http_status=None):
        super().__init__(message)
        self.http_status = http_status


class PhotoUnavailableError(VisitExportError):
    """One photo slot could not be fetched or resized. Never fatal to an export."""

    code = "photo_unavailable"

    def __init__(self, message=None, attempts=None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class GenerationError(VisitExportError):
    code = "generation_failed"
    status = 500


class PreviewError(VisitExportError):
    code = "preview_failed"
    status = 500
