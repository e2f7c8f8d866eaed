"""LLM Gateway Layer.

Provides the async client the prompt engine talks to:
  - Provider adapters (OpenAI chat completions, Anthropic messages)
  - Resilience & Circuit Breaker (exponential backoff with jitter)
  - Unified request/response DTOs
"""
