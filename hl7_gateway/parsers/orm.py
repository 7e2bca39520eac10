from .base import HL7Message, StructuralError
from .models import OrderNotification


def parse_orm(message: HL7Message) -> OrderNotification:
    """ORM^O01: order control data from ORC plus the requested test from OBR."""
    orc = message.segment("ORC")
    obr = message.segment("OBR")
    if orc is None or obr is None:
        raise StructuralError("Invalid ORM: missing ORC or OBR segment")

    return OrderNotification(
        order_control=orc.field(1),
        placer_order_number=orc.field(2),
        filler_order_number=orc.field(3),
        test_code=obr.field(4),
        priority=obr.field(5),
        requested_dt=obr.field(6),
        observation_dt=obr.field(7),
        collector_identifier=obr.field(10),
        specimen_received_dt=obr.field(14),
    )
