from fleet.entities.service import ServiceRecord
from fleet.entities.profile import ServiceProfile
from fleet.entities.service_dependency import ServiceDependency, ProfileDependency
from fleet.entities.orchestration_event import OrchestrationEventRecord

__all__ = [
    "ServiceRecord", "ServiceProfile",
    "ServiceDependency", "ProfileDependency",
    "OrchestrationEventRecord",
]
