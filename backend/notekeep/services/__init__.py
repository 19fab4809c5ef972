"""
NoteKeep Backend: Services Layer
=================================

Service Inventory:
    - CredentialStore: accounts and the email → challenge map, per-email lock
    - Notifier (abstract) / EmailNotifier: delivers one-time codes over SMTP
    - OTPIssuer / OTPVerifier: generate, store and consume one-time codes
    - TokenService: signs and verifies session tokens (JWT)
    - AuthService: the four auth operations the routes call
    - NoteService: per-user note CRUD

Routes stay thin: they validate input, call one service method and shape
the response. Everything here can be tested without HTTP.
"""
