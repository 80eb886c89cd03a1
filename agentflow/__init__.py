"""
Agent Flow Service.

Runs operator-defined node graphs as chat agents, one conversation turn
at a time. This package provides:

1. Node Types:
   - begin (greeting, variable seeding)
   - interface (pause point awaiting the user)
   - generate (LLM completion)
   - categorize (labelled branching)
   - retrieval (knowledge base search)

2. Flow Execution:
   - Graph navigation over labelled edges
   - Bounded, step-by-step execution engine
   - Copy-on-write conversation state

3. Delivery:
   - OpenAI chat-completion compatible responses
   - Server-sent event streaming, one chunk per executed node

API:
   - POST /api/flow - Run one turn of a flow
   - GET /api/flows/state/{id} - Get a conversation's flow state
   - GET /api/conversations/{id} - Get a conversation with its messages
   - DELETE /api/conversations/{id} - Delete a conversation
"""

__version__ = "1.0.0"
