"""
Chorus - multi-agent conversation orchestration.

Humans and agents exchange messages over a shared publish/subscribe stream.
Every agent decides on its own whether a message deserves a reply.
"""

__version__ = "1.0.0"
