"""
verification — Fail-closed verification of crowd reports.

Sub-modules:
    media     — size-capped media download + base64 encoding
    analysis  — generative analysis client (Gemini)
    verifier  — prompt building and verdict parsing
"""
