"""Federation services for the Lumen application."""

from .audit import DeliveryAuditTrail
from .delivery import DeliveryClient, OutboundDeliveryEngine
from .domain_filter import BlockedDomainRegistry, DomainBlockFilter
from .follow_responder import FollowApprovalResponder
from .inbound import InboundDispatcher
from .processing import ActivityProcessor
from .runtime import FederationRuntime
from .signature_verifier import SignatureVerifier

__all__ = [
    "ActivityProcessor",
    "BlockedDomainRegistry",
    "DeliveryAuditTrail",
    "DeliveryClient",
    "DomainBlockFilter",
    "FederationRuntime",
    "FollowApprovalResponder",
    "InboundDispatcher",
    "OutboundDeliveryEngine",
    "SignatureVerifier",
]
