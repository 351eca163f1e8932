"""
Fulfillment Kernel - order lifecycle engine

A transactional order-fulfillment core with:
- Role-qualified status transitions
- Exactly-once stock consumption and restoration
- Serialized customer credit reservation
- Backorder approval
- Post-commit event delivery through an outbox
"""

__version__ = "0.1.0"
