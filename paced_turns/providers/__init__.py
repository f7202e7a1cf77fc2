"""Upstream chat providers."""

from paced_turns.providers.openai_chat import OpenAIChatClient

__all__ = ["OpenAIChatClient"]
