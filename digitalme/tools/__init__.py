"""
External service clients for DigitalMe.

- ClaudeClient: Anthropic Claude API, used by the style extractor
"""

from digitalme.tools.claude_client import ClaudeClient

__all__ = [
    "ClaudeClient",
]
