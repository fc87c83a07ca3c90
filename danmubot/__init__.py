"""Live-room chat bot library: event handlers, welcomes, gift thanks, sign-ins and chat commands."""

__version__ = "0.1.0"