"""
ChatRelay

Backend for a browser chat client: multi-session conversation state,
streaming replies from an OpenAI-compatible API and rolling memory.
"""

__version__ = "0.3.0"
