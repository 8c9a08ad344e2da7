import json
import time

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException
from jwcrypto.jws import InvalidJWSSignature
from jwcrypto.jwt import JWTExpired, JWTNotYetValid
from pydantic import ValidationError

from lexidraft.exceptions import AuthenticationError
from lexidraft.logging import logger
from lexidraft.schemas.identity import SubjectIdentity, VerificationFailure
from lexidraft.settings import app_settings, check_jwt_secret


class CredentialVerifier:
    """
    Verifies the bearer tokens clients present after opening a connection.

    Tokens are JWTs signed with a secret shared with the HTTP auth service.
    Verification is CPU-only: no network, no disk, no shared state, so one
    instance can be used from any number of connection handlers.

    The verification process involves:
    1. Stripping an optional "Bearer " scheme prefix
    2. Checking the signature and the exp/nbf claims with jwcrypto
    3. Rejecting refresh tokens
    4. Building a SubjectIdentity from the claims

    Attributes:
        algorithm: JWS algorithm tokens must be signed with.
        leeway: Allowed clock skew in seconds for exp/nbf checks.
    """

    def __init__(
        self, secret: str, algorithm: str = "HS256", leeway: int = 0
    ) -> None:
        """
        Raises:
            ValueError: If ``secret`` is too short for HMAC signing.
        """
        check_jwt_secret(secret)
        self.algorithm = algorithm
        self.leeway = leeway
        self._key = jwk.JWK.from_password(secret)

    @classmethod
    def from_settings(cls) -> "CredentialVerifier":
        return cls(
            app_settings.JWT_SECRET,
            algorithm=app_settings.JWT_ALGORITHM,
            leeway=app_settings.JWT_LEEWAY_SECONDS,
        )

    def verify(self, token: str | None) -> SubjectIdentity | VerificationFailure:
        """
        Verify a credential without raising.

        Args:
            token: The raw credential sent by the client.

        Returns:
            SubjectIdentity on success, VerificationFailure otherwise.
        """
        try:
            return self.decode(token)
        except AuthenticationError as ex:
            return VerificationFailure(reason=ex.reason, detail=ex.detail)

    def decode(self, token: str | None) -> SubjectIdentity:
        """
        Verify a credential and return the identity it carries.

        Raises:
            AuthenticationError: When verification fails, with reason
                missing_token, token_expired, invalid_signature,
                token_decode_error or invalid_claims.
        """
        if not token or not token.strip():
            raise AuthenticationError("missing_token", "No token provided")

        token = token.strip()
        if token[:7].lower() == "bearer ":
            token = token[7:].strip()

        try:
            decoded = jwt.JWT(algs=[self.algorithm])
            decoded.leeway = self.leeway
            decoded.deserialize(token, key=self._key)
        except JWTExpired as ex:
            logger.warning(f"JWT token expired: {ex}")
            raise AuthenticationError("token_expired", str(ex))
        except JWTNotYetValid as ex:
            logger.warning(f"JWT token not yet valid: {ex}")
            raise AuthenticationError("invalid_claims", str(ex))
        except InvalidJWSSignature as ex:
            logger.warning(f"JWT signature rejected: {ex}")
            raise AuthenticationError("invalid_signature", str(ex))
        except (JWException, ValueError, TypeError) as ex:
            logger.warning(f"Error occurred while decode auth token: {ex}")
            raise AuthenticationError("token_decode_error", str(ex))

        try:
            claims = json.loads(decoded.claims)
        except ValueError as ex:
            raise AuthenticationError("token_decode_error", str(ex))

        if not isinstance(claims, dict):
            raise AuthenticationError(
                "token_decode_error", "Token claims are not an object"
            )

        if claims.get("type") == "refresh":
            raise AuthenticationError(
                "invalid_claims", "Refresh tokens cannot open a session"
            )

        try:
            return SubjectIdentity.model_validate(claims)
        except ValidationError as ex:
            raise AuthenticationError(
                "invalid_claims", f"Token has no usable subject: {ex}"
            )

    def issue(
        self,
        subject: int | str,
        role: str | None = None,
        expires_in: int | None = None,
        token_type: str = "access",
    ) -> str:
        """
        Sign a token for ``subject`` with the shared secret.

        Args:
            subject: Subject identifier placed in the "sub" claim.
            role: Optional role claim.
            expires_in: Lifetime in seconds (negative values produce an
                already-expired token). Defaults to
                JWT_ACCESS_TOKEN_EXPIRY_SECONDS.
            token_type: "access" or "refresh".

        Returns:
            The compact-serialized JWT.
        """
        if expires_in is None:
            expires_in = app_settings.JWT_ACCESS_TOKEN_EXPIRY_SECONDS

        now = int(time.time())
        claims: dict[str, object] = {
            "sub": str(subject),
            "type": token_type,
            "iat": now,
            "exp": now + expires_in,
        }
        if role:
            claims["role"] = role

        token = jwt.JWT(
            header={"alg": self.algorithm, "typ": "JWT"}, claims=claims
        )
        token.make_signed_token(self._key)
        return token.serialize()


credential_verifier = CredentialVerifier.from_settings()
