from uuid import UUID

from fastapi import HTTPException, Request

USER_ID_HEADER = "X-User-Id"


def get_current_user_id(request: Request) -> UUID:
    """Return the id of the user authenticated upstream of this service.

    Sessions and passwords are handled by the authentication layer in front
    of the API, which forwards the resolved user id in ``X-User-Id``.
    """
    raw_user_id = request.headers.get(USER_ID_HEADER)
    if not raw_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return UUID(raw_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header") from None
