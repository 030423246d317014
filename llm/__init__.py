"""
LLM integration for financial insights.

This package contains:
- client: Chat completions REST client with retries
- insights: Insight and monthly summary generation
- prompts: System and user prompt builders
"""
