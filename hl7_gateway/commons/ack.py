import uuid
from datetime import datetime
from typing import Optional

from loguru import logger

from hl7_gateway.commons.types import AckCfg
from hl7_gateway.helpers.tcp_transport import wrap_mllp
from hl7_gateway.parsers.base import FIELD_SEP, SEGMENT_SEP

ENCODING_CHARS = "^~\\&"

ACCEPT = "AA"
ERROR = "AE"


def new_control_id() -> str:
    # MSH-10 is limited to 20 characters
    return uuid.uuid4().hex[:20]


def build_ack_message(
    trigger_event: str,
    correlation_id: str,
    code: str = ACCEPT,
    identity: Optional[AckCfg] = None,
    text: str = "",
) -> str:
    """Minimal MSH + MSA acknowledgement identifying this server as sender.

    MSH-9 echoes the acknowledged trigger event (``ACK^R01^ACK``), or is a
    bare ``ACK`` when the event is unknown.
    """
    ident = identity or AckCfg()
    msh = [
        "MSH",
        ENCODING_CHARS,
        ident.sending_application,
        ident.sending_facility,
        ident.receiving_application,
        ident.receiving_facility,
        datetime.now().strftime("%Y%m%d%H%M%S"),
        "",
        f"ACK^{trigger_event}^ACK" if trigger_event else "ACK",
        new_control_id(),
        ident.processing_id,
        ident.version,
    ]
    msa = ["MSA", code, correlation_id or ""]
    if text:
        msa.append(text[:80])
    return FIELD_SEP.join(msh) + SEGMENT_SEP + FIELD_SEP.join(msa)


def build_ack(
    message_type: str,
    trigger_event: str,
    correlation_id: str,
    code: str = ACCEPT,
    identity: Optional[AckCfg] = None,
    text: str = "",
) -> bytes:
    """ACK ready for the wire: encoded and wrapped in the MLLP envelope."""
    logger.debug(f"Building {code} for {message_type or '?'}^{trigger_event or '?'} ({correlation_id!r})")
    return wrap_mllp(build_ack_message(trigger_event, correlation_id, code, identity, text))
