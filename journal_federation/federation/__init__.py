"""Exchange of users and submissions with other journal instances."""

from .client import FederationClient, FailureReason, RemoteFailure
from .orchestrator import FederationOrchestrator
