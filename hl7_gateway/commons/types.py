from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# -------- Settings --------


class ServerCfg(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=2575, ge=0, le=65535)
    max_frame_bytes: Optional[int] = Field(default=1024 * 1024, gt=0)
    frame_timeout_sec: Optional[float] = Field(default=30.0, gt=0)
    idle_timeout_sec: Optional[float] = Field(default=None, gt=0)
    shutdown_grace_sec: float = Field(default=5.0, ge=0)


class AckCfg(BaseModel):
    sending_application: str = "LIS"
    sending_facility: str = "LAB"
    receiving_application: str = "APP"
    receiving_facility: str = "SENDING"
    processing_id: str = "P"
    version: str = "2.5"
    nack_on_error: bool = False


class BridgeCfg(BaseModel):
    enabled: bool = True
    result_url: str = "http://localhost:5000/api/internal/hl7-result"
    order_url: Optional[str] = None
    timeout_sec: float = Field(default=5.0, gt=0)


class PathsCfg(BaseModel):
    logs_root: str = "logs"


class LoggingCfg(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    server: ServerCfg = Field(default_factory=ServerCfg)
    ack: AckCfg = Field(default_factory=AckCfg)
    bridge: BridgeCfg = Field(default_factory=BridgeCfg)
    paths: PathsCfg = Field(default_factory=PathsCfg)
    logging: LoggingCfg = Field(default_factory=LoggingCfg)


# -------- Outbound payloads (camelCase on the wire) --------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResultInfo(_CamelModel):
    filler_order_number: str
    universal_service_id: str
    priority: str
    result_status: str


class ObservationPayload(_CamelModel):
    set_id: str
    code: str
    name: str
    value: str
    units: str
    reference_range: str
    is_abnormal: bool
    date_time_of_the_observation: str


class ResultPayload(_CamelModel):
    result_info: ResultInfo
    observations: List[ObservationPayload]


class OrderInfo(_CamelModel):
    order_control: str
    placer_order_number: str
    filler_order_number: str
    test_code: str
    priority: str
    requested_date_time: str
    observation_date_time: str
    collector_identifier: str
    specimen_received_date_time: str


class OrderPayload(_CamelModel):
    order_info: OrderInfo
