"""
Session Management Module

Conversation models, the session store, context selection and memory
summarization.
"""

from .models import ChatMessage, ChatSession, ChatStat, ImageModelConfig, Mask, ModelConfig, Role

__all__ = ["ChatMessage", "ChatSession", "ChatStat", "ImageModelConfig", "Mask", "ModelConfig", "Role"]
