"""
Authentication Core

Stateless session tokens, multi-format password verification and
enumeration-safe password recovery behind a single action-dispatched endpoint.
"""

__version__ = "0.1.0"
__author__ = "Global Goals Jam Team"
