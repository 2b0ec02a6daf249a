"""
LLM module - language model provider abstraction.

- base: provider interface
- litellm_adapter: completions and remote embeddings through LiteLLM
- capabilities: extractor and summarizer callables for the orchestrator
"""
