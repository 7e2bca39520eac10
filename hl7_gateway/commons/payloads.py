from typing import Dict

from hl7_gateway.commons.types import (
    ObservationPayload,
    OrderInfo,
    OrderPayload,
    ResultInfo,
    ResultPayload,
)
from hl7_gateway.parsers.models import Notification, OrderNotification, ResultNotification


def to_result_payload(n: ResultNotification) -> Dict:
    """Map a result into the JSON body expected by the order-management API."""
    payload = ResultPayload(
        result_info=ResultInfo(
            filler_order_number=n.filler_order_number,
            universal_service_id=n.universal_service_id,
            priority=n.priority,
            result_status=n.result_status,
        ),
        observations=[
            ObservationPayload(
                set_id=o.set_id,
                code=o.code,
                name=o.name,
                value=o.value,
                units=o.units,
                reference_range=o.ref_range,
                is_abnormal=o.is_abnormal,
                date_time_of_the_observation=o.observed_at,
            )
            for o in n.observations
        ],
    )
    return payload.model_dump(by_alias=True)


def to_order_payload(n: OrderNotification) -> Dict:
    payload = OrderPayload(
        order_info=OrderInfo(
            order_control=n.order_control,
            placer_order_number=n.placer_order_number,
            filler_order_number=n.filler_order_number,
            test_code=n.test_code,
            priority=n.priority,
            requested_date_time=n.requested_dt,
            observation_date_time=n.observation_dt,
            collector_identifier=n.collector_identifier,
            specimen_received_date_time=n.specimen_received_dt,
        )
    )
    return payload.model_dump(by_alias=True)


def to_bridge_payload(n: Notification) -> Dict:
    if isinstance(n, ResultNotification):
        return to_result_payload(n)
    if isinstance(n, OrderNotification):
        return to_order_payload(n)
    raise TypeError(f"Unsupported notification type: {type(n).__name__}")
