"""Order fulfillment synchronization engine."""
