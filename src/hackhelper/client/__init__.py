"""Client for the project-generation workflow runtime."""

from hackhelper.client.api import ApiClient
from hackhelper.client.observer import MonitorHandle, MonitorOptions, RunObserver
from hackhelper.client.reconciler import ArtifactReconciler, CopyFilter
from hackhelper.client.runtime import RuntimeClient

__all__ = [
    "ApiClient",
    "ArtifactReconciler",
    "CopyFilter",
    "MonitorHandle",
    "MonitorOptions",
    "RunObserver",
    "RuntimeClient",
]
