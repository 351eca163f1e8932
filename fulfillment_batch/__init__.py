"""
fulfillment_batch -- scheduled background work for the fulfillment engine.

Currently the packing session timeout monitor.
"""
