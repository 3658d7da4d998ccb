"""Collaborator interfaces consumed by the protocol router."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from hederaintel.agent.models.report import MarketReport, NetworkHealthReport


@runtime_checkable
class ReportGenerator(Protocol):
    async def generate_report(self, assets: Sequence[str], focus: str = "general") -> MarketReport:
        """Build a market report for *assets* with the given focus label."""
        ...


@runtime_checkable
class NetworkHealthReporter(Protocol):
    async def generate_network_report(self) -> NetworkHealthReport:
        """Snapshot the health of the underlying ledger network."""
        ...
