"""
channels — Delivery backends.

Each channel module exposes:
    send(client, tokens, alert, ...) → list[BatchReceipt]

Channels are stateless functions and never raise for delivery failures;
the orchestrator decides what a failed receipt means.
"""
