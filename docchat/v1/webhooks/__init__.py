"""
Outbound webhooks: subscriptions, per-subscriber fan-out and signed delivery.
"""
