"""Tenant Payments.

Multi-tenant payment gateway layer: every organization configures its own
payment providers, and callers reach them through one uniform contract.

Modules:
    - core: Configuration, logging, tracing, KMS encryption, database
    - modules.payment_gateway: Gateway contract, provider adapters,
      credential resolution, adapter factory and webhook verification
"""

__version__ = "0.1.0"
