"""Exception hierarchy for link tagging."""


class LinkTaggerError(Exception):
    """Base class for all link-tagger errors."""

    code = "LINK_TAGGER_ERROR"


class PlanLimitError(LinkTaggerError):
    """A plan limit prevents the requested creation."""

    code = "PLAN_LIMIT"


class LinkLimitError(PlanLimitError):
    code = "LINK_LIMIT"


class DailyLinkLimitError(PlanLimitError):
    code = "DAILY_LINK_LIMIT"


class TagLimitError(PlanLimitError):
    code = "TAG_LIMIT"


class QuotaExceededError(LinkTaggerError):
    """AI resources are exhausted: the plan's allowance or the provider's quota."""

    code = "QUOTA_EXCEEDED"


class ExternalServiceError(LinkTaggerError):
    """A collaborator failed for a reason unrelated to quota."""

    code = "EXTERNAL_SERVICE_ERROR"


class MetadataFetchError(ExternalServiceError):
    code = "METADATA_FETCH_FAILED"


class SuggestionError(ExternalServiceError):
    code = "SUGGESTION_FAILED"


class TagCreationError(LinkTaggerError):
    code = "TAG_CREATION_FAILED"


class LinkNotFoundError(LinkTaggerError):
    code = "LINK_NOT_FOUND"


class DuplicateLinkError(LinkTaggerError):
    code = "DUPLICATE_LINK"

    def __init__(self, url: str, link_id: str):
        super().__init__(f"Link already saved: {url}")
        self.url = url
        self.link_id = link_id


class AlreadyProcessingError(LinkTaggerError):
    code = "ALREADY_PROCESSING"
