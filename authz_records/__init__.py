"""
Authorization record service.

Stores (user, resource, role) authorization facts and answers
get / find / set / del requests over a Redis-backed message bus.
"""

__version__ = "0.1.0"
