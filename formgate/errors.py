"""Rejection taxonomy for the contact-form pipeline.

Every gate that stops a submission raises a SubmissionRejected subclass.
Each carries the HTTP status and the message id (looked up in the
translation catalog) the client gets to see. The free-text ``detail`` is
for server logs only and never leaves the process.
"""


class SubmissionRejected(Exception):
    """A submission was stopped at one of the pipeline gates."""

    status_code = 400
    message_id = "php-error-generic"

    def __init__(self, detail="", message_id=None):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail
        if message_id is not None:
            self.message_id = message_id


class ConfigurationError(SubmissionRejected):
    status_code = 500
    message_id = "php-error-env-config"


class InvalidOrigin(SubmissionRejected):
    status_code = 403
    message_id = "php-error-invalid-origin"


class CsrfMismatch(SubmissionRejected):
    status_code = 403
    message_id = "php-error-csrf-security"


class RateLimited(SubmissionRejected):
    """Client exceeded its quota. ``reason`` is TOO_SOON or QUOTA_EXCEEDED."""

    status_code = 429

    TOO_SOON = "too_soon"
    QUOTA_EXCEEDED = "quota_exceeded"

    def __init__(self, reason, detail=""):
        message_id = (
            "php-error-rate-limit-wait"
            if reason == self.TOO_SOON
            else "php-error-rate-limit-exceeded"
        )
        super().__init__(detail, message_id=message_id)
        self.reason = reason


class CaptchaMissing(SubmissionRejected):
    status_code = 400
    message_id = "php-error-recaptcha-missing"


class CaptchaFailed(SubmissionRejected):
    status_code = 400
    message_id = "php-error-recaptcha-verify-failed"


class CaptchaUnavailable(SubmissionRejected):
    """The CAPTCHA provider could not be reached. Never treated as a pass."""

    status_code = 500
    message_id = "php-error-recaptcha-failed"


class FieldValidationFailed(SubmissionRejected):
    status_code = 400
    message_id = "php-error-fields-incomplete"


class MailTransportError(SubmissionRejected):
    """Primary notification mail could not be delivered to the SMTP server."""

    status_code = 500
    message_id = "php-error-email-send"


class SmtpConnectionError(MailTransportError):
    message_id = "php-error-smtp-connection"


class SmtpAuthError(MailTransportError):
    message_id = "php-error-smtp-auth"


class SmtpGenericError(MailTransportError):
    message_id = "php-error-email-send"
