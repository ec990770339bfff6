from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CallerDevice(BaseModel):
    """Device record sent by the access-control plane."""

    model_config = ConfigDict(extra="ignore")

    device_id: str
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    serial_number: Optional[str] = None
    virtual_ipv4: Optional[str] = None


class IpAddressRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    mac_address: Optional[str] = Field(default=None, alias="macAddress")


class UpstreamDevice(BaseModel):
    """Machine entry from the Defender inventory, one fetch cycle's snapshot."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    id: str
    computer_dns_name: Optional[str] = Field(default=None, alias="computerDnsName")
    ip_addresses: Optional[List[IpAddressRecord]] = Field(default=None, alias="ipAddresses")
    last_external_ip_address: Optional[str] = Field(default=None, alias="lastExternalIpAddress")
    device_tag: Optional[str] = Field(default=None, alias="deviceTag")
    aad_device_id: Optional[str] = Field(default=None, alias="aadDeviceId")
    last_seen: Optional[str] = Field(default=None, alias="lastSeen")
    risk_score: Optional[str] = Field(default=None, alias="riskScore")
    exposure_level: Optional[str] = Field(default=None, alias="exposureLevel")


class CachedCredential(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    expires_at: int


class MatchEvaluation(BaseModel):
    # access-control plane reads the matched id as "s2s_id"
    upstream_id: str = Field(validation_alias=AliasChoices("upstream_id", "s2s_id"), serialization_alias="s2s_id")
    score: int = Field(ge=0, le=100)


class PostureRequest(BaseModel):
    devices: List[CallerDevice]


class PostureResponse(BaseModel):
    result: Dict[str, MatchEvaluation]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
