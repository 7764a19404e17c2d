"""
LLM Package

Chat completion over langchain-openai's ChatOpenAI::

    from assistant.llm import CompletionService

    completion = CompletionService(settings)
    result = await completion.complete(messages, model="gpt-4-turbo-preview",
                                       max_tokens=4000, temperature=0.7)
    result.text, result.token_count, result.model_name
"""

from assistant.llm.client import CompletionResult, CompletionService

__all__ = [
    "CompletionResult",
    "CompletionService",
]
