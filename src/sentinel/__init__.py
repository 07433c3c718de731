"""Sentinel: a Discord bot enforcing a remotely managed blocklist."""
