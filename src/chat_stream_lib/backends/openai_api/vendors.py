"""OpenAI compatible vendors that only differ in endpoint, credentials and defaults."""

from .core import OpenAIAdapter


class DeepSeekAdapter(OpenAIAdapter):
    """DeepSeek chat and reasoner models. Reasoning text arrives as ``reasoning_content``."""

    vendor = "deepseek"
    api_key_env = "DEEPSEEK_API_KEY"
    default_base_url = "https://api.deepseek.com"
    default_temperature = 0.7
    default_top_p = 1.0


class GroqAdapter(OpenAIAdapter):
    """Models served by Groq's OpenAI compatible endpoint."""

    vendor = "groq"
    api_key_env = "GROQ_API_KEY"
    default_base_url = "https://api.groq.com/openai/v1"
