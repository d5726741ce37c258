"""Application modules.

This package contains the feature modules of the platform:
- payment_gateway: Per-organization payment providers behind one contract
"""
