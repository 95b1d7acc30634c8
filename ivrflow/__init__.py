"""
ivrflow - IVR workflow execution engine.

Interprets visual call-flow graphs against live telephony webhooks and
pre-synthesizes prompt audio for their nodes.
"""

__version__ = "1.0.0"
