"""
VPS Autoscaler

Monitoring and autoscaling control loop for cloud virtual servers, with a
REST API for managing servers, alert definitions and scaling policies.
"""

__version__ = "1.0.0"
__description__ = "VPS monitoring and autoscaling service"
