"""
Outgoing requests and notices

Builds Request and Notice envelopes on behalf of a service, sends them through the
transport and mirrors every outbound request to the observability log subject.
An ``inherited_tx`` passed here is the transaction id of a causally preceding
envelope and wins over any tx found in the fields.
"""

import logging
import time
from typing import Any, Dict, Mapping, Optional

from meshcall.envelope import Notice, Request, Response, parse_response
from meshcall.errors import (
    MeshcallError,
    ProtocolDiscardError,
    TransportError,
    ValidationError,
)
from meshcall.identity import LogKind, is_log_subject
from meshcall.rpc.context import ServiceContext
from meshcall.telemetry.metrics import (
    NOTICES_SENT,
    REQUEST_LATENCY,
    REQUESTS_SENT,
    increment_counter,
    record_latency,
)

logger = logging.getLogger(__name__)

REQUEST_FIELDS = ("subject", "args", "metadata", "tx")
NOTICE_FIELDS = ("subject", "payload", "metadata", "tx")


def _collect_fields(kind: str, allowed, envelope: Optional[Mapping[str, Any]],
                    fields: Dict[str, Any]) -> Dict[str, Any]:
    if envelope is not None and not isinstance(envelope, Mapping):
        raise ValidationError(f"{kind} must be a mapping of fields")
    values = dict(envelope or {})
    values.update(fields)
    unknown = set(values) - set(allowed)
    if unknown:
        raise ValidationError(f"Unknown {kind} field(s): {', '.join(sorted(unknown))}")
    return values


def build_request(context: ServiceContext, envelope: Optional[Mapping[str, Any]] = None,
                  inherited_tx: Optional[str] = None, **fields) -> Request:
    """Build an outgoing Request from the caller's service

    The subject must already be fully qualified (``service.method``).

    Raises:
        ValidationError: missing subject or malformed fields
    """
    values = _collect_fields("request", REQUEST_FIELDS, envelope, fields)
    if inherited_tx is not None:
        values["tx"] = inherited_tx
    subject = values.pop("subject", None)
    return Request(subject=subject, service=context.full_name, **values)


def build_notice(context: ServiceContext, envelope: Optional[Mapping[str, Any]] = None,
                 inherited_tx: Optional[str] = None, **fields) -> Notice:
    """Build an outgoing Notice, namespacing its subject under the sender's full name

    Raises:
        ValidationError: missing subject or payload, or malformed fields
    """
    values = _collect_fields("notice", NOTICE_FIELDS, envelope, fields)
    if inherited_tx is not None:
        values["tx"] = inherited_tx
    subject = values.pop("subject", None)
    if subject and isinstance(subject, str):
        subject = context.identity.notice_subject(subject)
    return Notice(subject=subject, service=context.full_name, **values)


def log_outcome(kind: str, request: Any, response: Response) -> None:
    """Log an exchange at a level matching its status class"""
    message = (f"{kind} {request.subject} tx={request.tx} from={request.service} "
               f"status={response.status_code}")
    if response.status_code >= 500:
        logger.error(f"{message} error={response.error.get('message') if response.error else None}")
    elif response.status_code >= 400:
        logger.warning(f"{message} error={response.error.get('message') if response.error else None}")
    else:
        logger.info(message)
    logger.debug(f"{kind} request={request.to_dict()} response={response.to_dict()}")


async def emit_log(context: ServiceContext, kind: str, subject: str,
                   request: Any, response: Response) -> None:
    """Publish the ``{request, response}`` pair to ``<full_name>._LOG.<kind>.<subject>``

    Best-effort: failures are logged, never raised. Nothing is emitted for subjects
    that already belong to the log namespace.
    """
    if is_log_subject(subject):
        return
    try:
        notice = Notice(
            subject=context.identity.log_subject(kind, subject),
            service=context.full_name,
            tx=request.tx,
            payload={"request": request.to_dict(), "response": response.to_dict()},
        )
        await context.transport.send_notice(notice.to_dict())
    except MeshcallError as e:
        logger.warning(f"Could not publish {kind} log notice for {subject}: {str(e)}")


async def send_request(context: ServiceContext, envelope: Optional[Mapping[str, Any]] = None,
                       inherited_tx: Optional[str] = None, **fields) -> Response:
    """Send a request and wait for its response

    Transport failures come back as a synthetic error Response, so the caller always
    gets a Response; the error surfaces when its payload is read.

    Raises:
        ValidationError: the request could not be built; nothing was sent
    """
    request = build_request(context, envelope, inherited_tx=inherited_tx, **fields)
    full_name = context.full_name

    increment_counter(REQUESTS_SENT, 1, {"service": full_name})
    start_time = time.time()

    try:
        raw_response = await context.transport.send_request(request.to_dict())
        response = parse_response(raw_response)
    except ProtocolDiscardError as e:
        response = Response.failure(request, full_name,
                                    TransportError(f"Invalid response for {request.subject}: {str(e)}"),
                                    to=full_name)
    except TransportError as e:
        response = Response.failure(request, full_name, e, to=full_name)

    latency_ms = (time.time() - start_time) * 1000
    record_latency(REQUEST_LATENCY, latency_ms, {"service": full_name, "status_code": response.status_code})

    log_outcome("request", request, response)

    if context.config.enable_request_log:
        await emit_log(context, LogKind.REQUEST, request.subject, request, response)

    return response


async def send_notice(context: ServiceContext, envelope: Optional[Mapping[str, Any]] = None,
                      inherited_tx: Optional[str] = None, **fields) -> Notice:
    """Publish a notice. Fire-and-forget: remote handler outcomes never come back.

    Raises:
        ValidationError: the notice could not be built; nothing was sent
        TransportError: the notice could not be handed to the broker
    """
    notice = build_notice(context, envelope, inherited_tx=inherited_tx, **fields)
    await context.transport.send_notice(notice.to_dict())

    increment_counter(NOTICES_SENT, 1, {"service": context.full_name})
    logger.debug(f"notice {notice.subject} tx={notice.tx} sent")
    return notice
