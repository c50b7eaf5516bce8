"""
Realtime notification channel.

Booking events are pushed to per-user Channels groups (``driver_<id>``,
``user_<id>``, ``operators``). The consumers that deliver them to sockets, and
any offline fallback, live outside this backend.

Usage:
    from realtime.notifications import notify_provider, notify_requester, notify_admins
    from realtime.notifications import notify_driver_event, notify_requester_event
"""
