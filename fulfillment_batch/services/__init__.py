"""Batch services: scheduled sweeps over the fulfillment kernel."""

from fulfillment_batch.services.packing_monitor import PackingSessionMonitor

__all__ = ["PackingSessionMonitor"]
