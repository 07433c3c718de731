"""Blocklist enforcement subsystem.

- sync engine (revision-based pull from the remote authority)
- offline queue (durable retry of outbound requests, dead-lettering)
- decision engine (ordered exemptions, notify/kick with retries)
- scanner (batched enforcement over existing members)
"""
