"""
finsync - Offline-first sync core for a personal finance app

Keeps a local mirror of server-owned records (expenses, budgets,
savings buckets, savings entries), queues mutations made while
offline, and reconciles with the server when connectivity returns.

DESIGN PRINCIPLES:
1. Local write first, remote confirmation later
2. Pending local state always wins over a stale server snapshot
3. No silent clearing of pending or failed records
4. Every sync step is logged
5. Remote service and local backend are swappable
"""

__version__ = "1.0.0"
__author__ = "finsync Team"
