"""
Sparkle - streaming assistant service for chat rooms.

A user sends a prompt into a room, the assistant's reply streams back to
that user token by token, and the finished reply lands in the room for
every member to see.
"""

__version__ = "0.1.0"
