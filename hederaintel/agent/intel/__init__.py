"""Intelligence collaborators: market reports and network health."""

from hederaintel.agent.intel.base import NetworkHealthReporter, ReportGenerator
from hederaintel.agent.intel.network import NetworkAnalytics
from hederaintel.agent.intel.report import IntelEngine

__all__ = ["IntelEngine", "NetworkAnalytics", "NetworkHealthReporter", "ReportGenerator"]
