"""Marathon REST API access."""

from .client import Deployment, DeploymentResult, MarathonClient
from .retry import CancellableSleeper, RetryPolicy, with_reauthentication

__all__ = [
    "Deployment",
    "DeploymentResult",
    "MarathonClient",
    "CancellableSleeper",
    "RetryPolicy",
    "with_reauthentication",
]
