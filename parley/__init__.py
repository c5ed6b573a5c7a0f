"""Parley - a conversational client that turns chat into local tool actions."""

__version__ = "0.1.0"

from parley.agent import Agent, TurnEvent, TurnState, create_agent
from parley.config import Config

__all__ = ["Agent", "Config", "TurnEvent", "TurnState", "create_agent", "__version__"]
