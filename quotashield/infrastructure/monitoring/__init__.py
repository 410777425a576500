"""Logging setup.

Bounded Context: Monitoring
"""
