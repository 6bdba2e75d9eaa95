"""
Spirit — an always-on agent that thinks on its own and asks before it acts.

The package turns a stateless language model into a continuously running
agent. Every few minutes the consciousness loop senses its environment, asks
the model what to do, and carries out the decisions. Anything that smells
dangerous is held at the approval gate until a human says yes.

Architecture layers (bottom to top):
    1. Sensitivity classifier (security/sensitivity.py)
    2. Approval gate + kill switch (security/approval.py)
    3. Secure executor (security/executor.py)
    4. Model client + response parsing (api/, cognition/)
    5. Tools (tools/)
    6. Consciousness loop (heartbeat.py)
"""

__version__ = "0.1.0"
