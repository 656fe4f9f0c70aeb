"""Ingestion layer.

Converts raw device messages into a validated :class:`InboundEvent` and
per-kind payload models. Only the engine turns them into state changes.
"""

from thermocal.ingestion.events import InboundEvent, SensorPayload, ThermostatPayload, parse_payload

__all__ = ["InboundEvent", "SensorPayload", "ThermostatPayload", "parse_payload"]
