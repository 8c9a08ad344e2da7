from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class SubjectIdentity(BaseModel):  # type: ignore[misc]
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    # Access tokens carry the subject as "sub"; older ones used "uid" or "id"
    subject: str = Field(
        ..., validation_alias=AliasChoices("sub", "uid", "id", "subject")
    )
    role: str | None = None
    roles: list[str] = []
    expires_at: int | None = Field(
        default=None, validation_alias=AliasChoices("exp", "expires_at")
    )

    @field_validator("subject", mode="before")
    @classmethod
    def _stringify_subject(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def has_role(self, role: str) -> bool:
        return self.role == role or role in self.roles

    def __hash__(self) -> int:
        return hash(self.subject)


class VerificationFailure(BaseModel):  # type: ignore[misc]
    """
    Typed result of a rejected credential.

    Attributes:
        reason: Machine-readable code, one of missing_token, token_expired,
            invalid_signature, token_decode_error, invalid_claims.
        detail: Human-readable description for logs.
    """

    model_config = ConfigDict(frozen=True)

    reason: str
    detail: str
