"""Idempotency support for the publish endpoint.

``try_begin`` claims an idempotency key inside the caller's transaction. The
outcome is either a ``ReplayedRequest`` carrying the response stored by an
earlier call, or a ``ClaimedRequest`` that owns the open transaction until the
guarded work is done and ``ClaimedRequest.complete`` stores the response and
commits. Once completed or aborted, a ``ClaimedRequest`` refuses further use.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.responses import Response

from app.core.exceptions import IdempotencyConflictError, InvariantViolation, ValidationError
from app.repositories.idempotency_repository import IdempotencyRepository

MAX_KEY_BYTES = 63


@dataclass(frozen=True)
class IdempotencyKey:
    """Client-supplied token scoping a publish request, 1-63 bytes of UTF-8."""

    value: str

    def __post_init__(self) -> None:
        if not self.value:
            raise ValidationError("Idempotency key cannot be empty")
        if len(self.value.encode("utf-8")) > MAX_KEY_BYTES:
            raise ValidationError(
                f"Idempotency key cannot be longer than {MAX_KEY_BYTES} bytes"
            )

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StoredResponse:
    """A fully buffered HTTP response as persisted for replay."""

    status_code: int
    headers: tuple[tuple[str, bytes], ...]
    body: bytes

    def to_response(self) -> Response:
        """Rebuild the HTTP response byte for byte, header order included."""
        response = Response(content=self.body, status_code=self.status_code)
        response.raw_headers.extend(
            (name.lower().encode("latin-1"), value) for name, value in self.headers
        )
        return response


@dataclass(frozen=True)
class ReplayedRequest:
    """The key was already used; ``response`` is what the first request returned."""

    response: StoredResponse


class ClaimedRequest:
    """Ownership of an idempotency key for the lifetime of one open transaction."""

    def __init__(self, db: Session, user_id: UUID, key: IdempotencyKey):
        self._db = db
        self.user_id = user_id
        self.key = key
        self._finished = False

    @property
    def session(self) -> Session:
        """The transaction the guarded work must run in."""
        self._ensure_open()
        return self._db

    def complete(self, response: StoredResponse) -> StoredResponse:
        """Store the response in the claimed row and commit the whole transaction."""
        self._ensure_open()
        IdempotencyRepository(self._db).save_response(
            self.user_id,
            str(self.key),
            status=response.status_code,
            headers=list(response.headers),
            body=response.body,
        )
        self._db.commit()
        self._finished = True
        return response

    def abort(self) -> None:
        """Roll back the claim together with any work done under it."""
        if self._finished:
            return
        self._finished = True
        self._db.rollback()

    def _ensure_open(self) -> None:
        if self._finished:
            raise InvariantViolation(
                f"Transaction for idempotency key {str(self.key)!r} is already finalized"
            )


def try_begin(
    db: Session, user_id: UUID, key: IdempotencyKey, retry_after: int = 1
) -> ReplayedRequest | ClaimedRequest:
    """Claim ``key`` for ``user_id`` or return the response stored for it.

    Raises:
        IdempotencyConflictError: another request holds the key and has not
            stored its response yet.
    """
    repo = IdempotencyRepository(db)
    if repo.claim(user_id, str(key)):
        return ClaimedRequest(db, user_id, key)

    record = repo.get_by_key(user_id, str(key))
    if record is None or record.response_status is None:
        raise IdempotencyConflictError(str(key), retry_after=retry_after)

    return ReplayedRequest(
        StoredResponse(
            status_code=int(record.response_status),
            headers=tuple(record.response_headers or ()),
            body=bytes(record.response_body or b""),
        )
    )
