from dataclasses import dataclass
from typing import Tuple, Union

ABNORMAL_NORMAL_FLAGS = ("", "N")


@dataclass(frozen=True)
class OrderNotification:
    order_control: str = ""
    placer_order_number: str = ""
    filler_order_number: str = ""
    test_code: str = ""
    priority: str = ""
    requested_dt: str = ""
    observation_dt: str = ""
    collector_identifier: str = ""
    specimen_received_dt: str = ""


@dataclass(frozen=True)
class Observation:
    set_id: str = ""
    value_type: str = ""
    code: str = ""
    name: str = ""
    sub_id: str = ""
    value: str = ""
    units: str = ""
    ref_range: str = ""
    abnormal_flag: str = ""
    status: str = ""  # OBX-11
    observed_at: str = ""  # OBX-14

    @property
    def is_abnormal(self) -> bool:
        return self.abnormal_flag not in ABNORMAL_NORMAL_FLAGS


@dataclass(frozen=True)
class ResultNotification:
    filler_order_number: str = ""
    universal_service_id: str = ""
    priority: str = ""
    result_status: str = ""
    parent_result: str = ""
    result_copies_to: str = ""
    parent: str = ""
    observations: Tuple[Observation, ...] = ()


Notification = Union[OrderNotification, ResultNotification]
