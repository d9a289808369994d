"""
Typed structural failures raised during ingestion.

Skippable data defects (a message without a timestamp, a prompt without
text) are never raised; they are dropped with a log line where the row-set
is built. Everything here aborts the enclosing transaction.
"""


class IngestError(Exception):
    """Base class for ingestion failures that abort the transaction."""


class MissingIdentityFieldError(IngestError, ValueError):
    """The export lacks a field needed to identify the account or person."""

    def __init__(self, field_name: str, platform: str):
        self.field_name = field_name
        self.platform = platform
        super().__init__(f"{platform} export is missing required field '{field_name}'")


class ProfileNotFoundError(IngestError, LookupError):
    """A profile that must exist for the requested operation does not."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"Profile not found: {profile_id}")


class ProfileConflictError(IngestError):
    """The upload conflicts with stored profiles (ids, owners or platforms)."""


class ActiveWindowOverlapError(ProfileConflictError):
    """Absorption refused because the two accounts' activity windows overlap."""

    def __init__(self, old_profile_id: str, old_last: str, new_profile_id: str, new_first: str):
        self.old_profile_id = old_profile_id
        self.new_profile_id = new_profile_id
        super().__init__(
            f"Cannot absorb {old_profile_id} into {new_profile_id}: old profile is active "
            f"until {old_last}, new profile starts {new_first}"
        )


class WriteError(IngestError):
    """An insert or update did not affect the row it was expected to."""
