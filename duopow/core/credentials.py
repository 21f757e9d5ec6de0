import logging

import jwt

from .errors import MalformedInput

log = logging.getLogger(__name__)


def decode_external_id(credential: str) -> int:
    """Read the account id from a bearer token's payload.

    Purely local: the signature is not verified here, the platform does that
    when the token is presented on the authenticated write.
    """
    token = (credential or "").strip()
    if token.lower().startswith("bearer "):
        token = token[len("bearer ") :].strip()
    if not token:
        raise MalformedInput("empty credential")
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.PyJWTError as exc:
        log.debug("credential rejected: %s", exc)
        raise MalformedInput("credential is not a valid token") from exc
    subject = claims.get("sub")
    try:
        external_id = int(subject)
    except (TypeError, ValueError):
        raise MalformedInput("credential carries no account id") from None
    if external_id <= 0:
        raise MalformedInput("credential carries no account id")
    return external_id
