"""
MauticDeployer - install and update a Mautic Docker stack on a single host
"""

__version__ = "0.1.0"

from .core import MauticDeployer
from .errors import DeployerError

__all__ = ["MauticDeployer", "DeployerError"]
