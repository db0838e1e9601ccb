"""
Maps request subjects onto the authorization service and frames replies.

Every call to ``Dispatcher.handle`` returns exactly one JSON reply: the result
on success, or ``{"error": code, "message": ..., "details": ...}``.
"""
from typing import Any, Awaitable, Callable, Dict, Union
import json
import logging

from pydantic import TypeAdapter

from authz_records.application.authorization_service import AuthorizationService
from authz_records.exceptions import ConflictError, DecodeError, NotFoundError, RecordServiceError, UnexpectedError
from authz_records.schemas.authorization import AuthorizationInput, AuthorizationRead, DeleteStatus, decode_input

logger = logging.getLogger(__name__)

_record_list = TypeAdapter(list[AuthorizationRead])

_REPLY_ERRORS = {cls.code: cls for cls in (DecodeError, NotFoundError, ConflictError, UnexpectedError)}

Handler = Callable[[AuthorizationInput], Awaitable[str]]


class UnknownSubjectError(RecordServiceError):
    code = "unexpected"
    default_message = "No handler for subject"


class Dispatcher:
    def __init__(self, service: AuthorizationService, prefix: str = "authorization"):
        self.service = service
        self.prefix = prefix
        self.handlers: Dict[str, Handler] = {
            self.subject("get"): self._get,
            self.subject("find"): self._find,
            self.subject("set"): self._set,
            self.subject("del"): self._del,
        }

    def subject(self, operation: str) -> str:
        return f"{self.prefix}.{operation}"

    @property
    def subjects(self) -> list[str]:
        return list(self.handlers)

    async def handle(self, subject: str, data: Union[str, bytes, None]) -> str:
        try:
            handler = self.handlers.get(subject)
            if handler is None:
                raise UnknownSubjectError(details={"subject": subject})
            record_in = decode_input(data)
            return await handler(record_in)
        except RecordServiceError as e:
            if isinstance(e, UnexpectedError):
                logger.error(f"{subject} failed: {e.message}")
            else:
                logger.debug(f"{subject} rejected: {e.code} {e.details}")
            return self.encode_error(e)
        except Exception:
            logger.exception(f"Unhandled error while serving {subject}")
            return self.encode_error(UnexpectedError())

    @staticmethod
    def encode_error(error: RecordServiceError) -> str:
        return json.dumps(error.to_reply(), default=str)

    async def _get(self, record_in: AuthorizationInput) -> str:
        record = await self.service.get(record_in)
        return AuthorizationRead.model_validate(record).model_dump_json()

    async def _find(self, record_in: AuthorizationInput) -> str:
        records = await self.service.find(record_in)
        return _record_list.dump_json(_record_list.validate_python(records, from_attributes=True)).decode()

    async def _set(self, record_in: AuthorizationInput) -> str:
        record = await self.service.set(record_in)
        return AuthorizationRead.model_validate(record).model_dump_json()

    async def _del(self, record_in: AuthorizationInput) -> str:
        await self.service.delete(record_in)
        return DeleteStatus().model_dump_json()


def decode_reply(reply: Union[str, bytes]) -> Any:
    """Parse a reply and raise the matching service error for failure replies."""
    body = json.loads(reply)
    if isinstance(body, dict) and "error" in body:
        error_cls = _REPLY_ERRORS.get(body["error"], UnexpectedError)
        raise error_cls(body.get("message"), details=body.get("details"))
    return body
