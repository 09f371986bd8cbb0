"""Exception types raised by QuizBank."""


class QuizBankError(Exception):
    """Base class for all QuizBank errors."""


class ProviderConfigError(QuizBankError, ValueError):
    """Provider is missing, inactive, or misconfigured."""


class UnsupportedProviderError(ProviderConfigError):
    """Provider family cannot be used for automatic parsing."""


class DocumentNotFoundError(QuizBankError, LookupError):
    """Referenced document does not exist."""


class ChapterNotFoundError(QuizBankError, LookupError):
    """Referenced chapter does not exist."""


class QuestionNotFoundError(QuizBankError, LookupError):
    """Referenced question does not exist."""


class PermissionDeniedError(QuizBankError):
    """Caller is neither the owner nor an elevated role."""


class UnsupportedFileTypeError(QuizBankError, ValueError):
    """Uploaded file type is not accepted by the pipeline."""


class ContentError(QuizBankError):
    """Source file cannot be read or decoded."""


class QueueFullError(QuizBankError):
    """Parse task queue has reached its pending-task limit."""


class InvalidStateError(QuizBankError, ValueError):
    """Operation is not allowed in the document's current status."""


class ExtractionError(QuizBankError, ValueError):
    """Provider response does not contain a usable question payload."""
