from typing import List

from .base import HL7Message, Segment, StructuralError
from .models import Observation, ResultNotification


def parse_observation(obx: Segment) -> Observation:
    # OBX-3: CE -> "code^text"; bare codes double as the name
    return Observation(
        set_id=obx.field(1),
        value_type=obx.field(2),
        code=obx.component(3, 1),
        name=obx.component(3, 2) or obx.field(3),
        sub_id=obx.field(4),
        value=obx.field(5),
        units=obx.field(6),
        ref_range=obx.field(7),
        abnormal_flag=obx.field(8),
        status=obx.field(11),
        observed_at=obx.field(14),
    )


def parse_oru(message: HL7Message) -> ResultNotification:
    """ORU^R01: the (single) OBR header and every OBX in source order.

    Repeated observation codes are kept; instruments reuse them for
    repeat channels of the same test.
    """
    obr = message.segment("OBR")
    if obr is None:
        raise StructuralError("Invalid ORU: missing OBR segment")

    observations: List[Observation] = [parse_observation(obx) for obx in message.segments_named("OBX")]

    return ResultNotification(
        filler_order_number=obr.field(3),
        universal_service_id=obr.field(4),
        priority=obr.field(5),
        result_status=obr.field(25),
        parent_result=obr.field(26),
        result_copies_to=obr.field(28),
        parent=obr.field(29),
        observations=tuple(observations),
    )
