"""
NoteKeep Backend: Middleware Package
=====================================

Cross-cutting request handling applied in front of every route.

Middleware Chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    Rate limiting runs first so that flooded auth endpoints are turned away
    before a session is opened or a code is generated. The request ID is set
    before the access log line is written, so both share it.
"""
