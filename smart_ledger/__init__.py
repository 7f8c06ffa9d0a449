"""
Smart Ledger - Source Package

A small dashboard for five personal financial records (bank balance,
expenses, sales, orders, reminders), each kept as a single latest row
per owner in a hosted backend.

DESIGN PRINCIPLES:
1. One generic sync controller, parameterized by record schema
2. One record store abstraction, swappable between backends
3. Every failure ends in a usable state with a visible message
4. The server's last write wins
"""

__version__ = "1.0.0"
__author__ = "Smart Ledger Team"
