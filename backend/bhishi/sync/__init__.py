"""Client-side synchronisation core.

These modules run wherever a round or draw is being watched: a device
session, a bot, or the server's own watchdog. They never mutate ledger
state directly; they read authoritative records, derive time from the
ledger's timestamps and call ledger operations through a gateway.
"""
