"""Data models for LanProbe."""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class HostStatus(str, Enum):
    """Host reachability after a scan."""
    ONLINE = "Online"
    OFFLINE = "Offline"


class CategoryGroup(str, Enum):
    """Coarse device role buckets used for conflict comparison."""
    COMPUTING = "Computing"
    NETWORKING = "Networking"
    PERIPHERAL = "Peripheral"
    IOT = "IoT"
    UNKNOWN = "Unknown"


class AddressRange(BaseModel):
    """A validated IPv4 network block."""
    network_address: str = Field(..., description="Network address in dotted-quad form")
    prefix_length: int = Field(..., ge=1, le=32, description="CIDR prefix length")

    @property
    def address_count(self) -> int:
        return 2 ** (32 - self.prefix_length)

    def __str__(self) -> str:
        return f"{self.network_address}/{self.prefix_length}"


class RangeResult(BaseModel):
    """Result of resolving a scan target into host addresses."""
    success: bool
    hosts: list[str] = Field(default_factory=list)
    range: Optional[AddressRange] = None
    error: Optional[str] = None


class ProbeResult(BaseModel):
    """Outcome of a single connection attempt."""
    port: int = Field(..., ge=0, le=65535)
    open: bool
    elapsed_ms: float = 0.0


class HostScanResult(BaseModel):
    """Liveness and open ports of one host."""
    ip: str
    status: HostStatus
    open_ports: list[int] = Field(default_factory=list)

    @property
    def online(self) -> bool:
        return self.status == HostStatus.ONLINE


class PortService(BaseModel):
    """Service identified behind an open port."""
    port: int
    service_name: str = Field(..., alias="serviceName")
    description: str = ""

    model_config = {"populate_by_name": True}


class ClassificationResult(BaseModel):
    """Output of the device classifier."""
    category: str = "Unknown"
    analysis: str = "AI analysis was incomplete."
    services: list[PortService] = Field(default_factory=list)


class Pending(BaseModel):
    """Classification requested, no answer yet."""
    state: Literal["pending"] = "pending"


class Classified(BaseModel):
    """Classifier answered."""
    state: Literal["classified"] = "classified"
    category: str
    analysis: str
    services: list[PortService] = Field(default_factory=list)


class Failed(BaseModel):
    """Classifier failed or timed out."""
    state: Literal["failed"] = "failed"
    reason: str = ""


ClassificationState = Annotated[
    Union[Pending, Classified, Failed],
    Field(discriminator="state"),
]

FAILED_CATEGORY = "Error"
FAILED_ANALYSIS = "AI analysis failed."


class Conflict(BaseModel):
    """Likely address reassignment between two scans."""
    previous_category: str


class Device(BaseModel):
    """
    A host found reachable during one scan generation.

    Inserted in the ``Pending`` state the moment the host answers and
    updated in place once the classifier responds.
    """
    ip: str
    status: HostStatus = HostStatus.ONLINE
    open_ports: list[int] = Field(default_factory=list)
    classification: ClassificationState = Field(default_factory=Pending)
    conflict: Optional[Conflict] = None
    generation: int = 0

    @property
    def is_analyzing(self) -> bool:
        return isinstance(self.classification, Pending)

    @property
    def category(self) -> str:
        if isinstance(self.classification, Classified):
            return self.classification.category
        if isinstance(self.classification, Failed):
            return FAILED_CATEGORY
        return ""

    @property
    def analysis(self) -> str:
        if isinstance(self.classification, Classified):
            return self.classification.analysis
        if isinstance(self.classification, Failed):
            return FAILED_ANALYSIS
        return ""

    @property
    def services(self) -> list[PortService]:
        if isinstance(self.classification, Classified):
            return self.classification.services
        return []

    def to_dict(self) -> dict:
        """Flattened view for JSON output."""
        return {
            "ip": self.ip,
            "status": self.status.value,
            "open_ports": self.open_ports,
            "category": self.category,
            "analysis": self.analysis,
            "services": [s.model_dump(by_alias=True) for s in self.services],
            "is_analyzing": self.is_analyzing,
            "conflict": self.conflict.model_dump() if self.conflict else None,
        }


class ScanProgress(BaseModel):
    """Live progress of a scan generation."""
    completed: int = 0
    total: int = 0
    current_label: str = ""
    found_count: int = 0

    @property
    def done(self) -> bool:
        return self.completed >= self.total


class StabilitySample(BaseModel):
    """Link quality estimate for one host and port."""
    success_count: int = 0
    total_pings: int = 0
    avg_latency_ms: float = 0.0
    jitter_ms: float = 0.0
    error: Optional[str] = None

    @property
    def success_rate(self) -> float:
        """Fraction of pings that completed the handshake."""
        if not self.total_pings:
            return 0.0
        return self.success_count / self.total_pings
