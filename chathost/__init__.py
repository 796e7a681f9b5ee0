"""
chathost - chat-automation host.

Routes inbound chat events through an ordered processing pipeline,
resolves access for every sender and dispatches permitted commands.
"""

__version__ = "0.1.0"
__logo__ = "💬"
