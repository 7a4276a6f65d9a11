import jwt

from marketplace_messaging.core.config import settings
from marketplace_messaging.core.errors import Unauthorized
from marketplace_messaging.schemas.user import TokenPayload


def decode_access_token(token: str) -> TokenPayload:
    """Verify a bearer token issued by the account service.

    Only verification happens here; tokens are minted elsewhere.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return TokenPayload.model_validate(payload)
    except (jwt.PyJWTError, ValueError) as exc:
        raise Unauthorized("Not authorized, token failed") from exc
