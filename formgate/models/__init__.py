# Models package: plain value objects, nothing is persisted.

from formgate.models.submission import ContactSubmission  # noqa: F401
