"""Error taxonomy shared by tool handlers, the generation client and the catalog."""


GENERIC_ERROR_MESSAGE = 'Unable to process your request. Please try again.'


class PatientLeadError(Exception):
    code = 'unknown_error'
    status_code = 500
    user_message = GENERIC_ERROR_MESSAGE

    def __init__(self, message='', *, code=None):
        super().__init__(message or self.user_message)
        if code:
            self.code = code


class CatalogError(PatientLeadError):
    """Static tier or tool configuration is inconsistent."""

    code = 'catalog_error'


class InputValidationError(PatientLeadError):
    code = 'invalid_input'
    status_code = 400

    def __init__(self, message, *, field=None):
        super().__init__(message)
        self.field = field
        self.user_message = message


class AccessDeniedError(PatientLeadError):
    """Tier or usage denial; carries the ToolAccessDecision that caused it."""

    status_code = 403

    def __init__(self, message, decision):
        super().__init__(message, code=decision.reason_code or 'access_denied')
        self.decision = decision
        self.user_message = message
        if decision.reason_code in {'hourly_limit', 'daily_limit', 'complex_limit'}:
            self.status_code = 429


class TransientFault(PatientLeadError):
    code = 'service_unavailable'
    status_code = 503
    user_message = 'The AI service is temporarily unavailable. Please try again in a moment.'


class ClientFault(PatientLeadError):
    code = 'configuration_error'
    status_code = 502
    user_message = 'The AI service rejected this request because of a configuration problem. Please contact support.'


class ParseRecoveryExhausted(PatientLeadError):
    code = 'parse_recovery_exhausted'
