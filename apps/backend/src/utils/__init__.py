"""
VPS Autoscaler - Utilities Package

HTTP clients for the metrics agent and the provisioning API, the TCP
connectivity probe, and API exception handling helpers.
"""

from .connectivity import probe_tcp
from .glances_client import GlancesClient
from .provisioning_client import ProvisioningClient, get_provisioning_client

__all__ = [
    "probe_tcp",
    "GlancesClient",
    "ProvisioningClient",
    "get_provisioning_client",
]
