"""
channels — Messaging provider backends.

Each backend implements the Messenger protocol:
    await send(to, body) → provider message id

Backends do not retry. Fan-out and failure isolation live in dispatcher.
"""
