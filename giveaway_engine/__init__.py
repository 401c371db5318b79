"""Timed Discord giveaways with button, reaction, trivia and competition entry."""

__version__ = "0.1.0"
