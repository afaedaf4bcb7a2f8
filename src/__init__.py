"""
Event Socket Client

A client for the Event Socket control protocol of a telephony switch,
including session recording and a terminal replay viewer.
"""

__version__ = "1.0.0"
__description__ = "Event Socket client with session recording and replay"
