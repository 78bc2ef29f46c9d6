"""
learnflow - Service Integrations

HTTP calls between the two services:
- LmsClient: reco querying lms for courses and learner stats
- RecoEventRelay: lms forwarding lesson completions to reco
"""
from integrations.event_relay import RecoEventRelay
from integrations.lms_client import LmsClient

__all__ = [
    "LmsClient",
    "RecoEventRelay",
]
