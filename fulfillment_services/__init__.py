"""
fulfillment_services -- public surface of the fulfillment engine.

``FulfillmentEngine`` wires configuration, kernel services and the
packing monitor together; callers embedding the engine start here.
"""

from fulfillment_services.engine import FulfillmentEngine

__all__ = ["FulfillmentEngine"]
