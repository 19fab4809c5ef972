"""
NoteKeep Backend: API Routes Package
=====================================

Route Inventory:
    - auth.py:    POST /api/auth/signup, /verify-otp, /login,
                  /verify-login-otp, /resend-otp; GET /api/auth/me
    - notes.py:   GET/POST /api/notes, GET/PUT/DELETE /api/notes/{id}
    - health.py:  GET /health

Handlers only translate HTTP to service calls. The route gate is the
get_current_user dependency (notekeep.dependencies).
"""
