from .base import LLMClient, LLMError, RequestError, JsonError, ApiError
from .openai_client import OpenAIClient
from .prompts import build_preprocessor_messages, build_editor_messages
