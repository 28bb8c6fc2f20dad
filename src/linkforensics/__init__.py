"""
Link Forensics: identity and geolocation capture for shared-resource access
"""

__version__ = "0.1.0"

from linkforensics.core import ForensicRecord, NetworkIdentity, DeviceFingerprint, BestLocation
from linkforensics.capabilities import CapabilitySet, capabilities_from_client
from linkforensics.assembler import ForensicRecordAssembler, generate_access_id
from linkforensics.engine import build_assembler, build_tracker
from linkforensics.session import SessionEventTracker
from linkforensics.scoring import TrustScorer, TrustFlags

__all__ = [
    "ForensicRecord",
    "NetworkIdentity",
    "DeviceFingerprint",
    "BestLocation",
    "CapabilitySet",
    "capabilities_from_client",
    "ForensicRecordAssembler",
    "generate_access_id",
    "build_assembler",
    "build_tracker",
    "SessionEventTracker",
    "TrustScorer",
    "TrustFlags",
]
