"""
Error taxonomy for LoyaltyGuard.

Only fatal submission errors propagate to callers. Unavailable signals,
failed lookups and malformed rule input are recovered inside the component
that hit them and logged there.
"""


class LoyaltyGuardError(Exception):
    """Base class for all LoyaltyGuard errors."""


class FatalSubmissionError(LoyaltyGuardError):
    """A submission cannot be processed at all (aborts that submission only)."""


class MissingSubmitterError(FatalSubmissionError):
    """The batch has no submitter/profile id to attribute the receipt to."""

    def __init__(self, context: str):
        self.context = context
        super().__init__(f"No submitter id for {context}")


class OracleResponseError(LoyaltyGuardError):
    """The semantic oracle returned something that is not a usable assessment."""
