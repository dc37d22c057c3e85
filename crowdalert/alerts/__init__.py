"""
alerts — Verified-disaster SMS alerting.

Sub-modules:
    channels/     — Messaging provider backends (Twilio, simulation)
    orchestrator  — locate → verify → select → dispatch for one report
    audience      — Radius-based selection over the user directory
    dispatcher    — Bounded-concurrency SMS fan-out
    directory     — Read-only user directory sources
    models        — Data structures shared across the pipeline
"""
