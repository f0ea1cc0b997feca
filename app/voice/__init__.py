"""
app.voice - LiveKit voice worker

Modules:
  persona   - room metadata to AgentRuntimeConfig, internal API client
  providers - "provider/model" ids to STT / TTS / LLM plugins
  tools     - end_call, web search, calendar and knowledge base tools
  worker    - prewarm + entrypoint run by agent_main.py
"""
