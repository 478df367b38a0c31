"""
External LLM access.

- client: provider interface, Anthropic Messages provider and error taxonomy
- prompts: scope-classifier and enhancement prompts
- quality: coarse quality level for a model answer
"""
