"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from any HTTP/WebSocket layer.

Modules:
    - booking_management: Booking lifecycle and pricing
    - matching: Candidate search, dispatch rounds and timeout escalation
    - zones: Service zone resolution and inter-regional checks
    - payments: Payment capture seam
    - exceptions: Error taxonomy shared by all services

Submodules are imported explicitly (``from services.matching import ...``) so
that importing this package does not load any models.
"""
