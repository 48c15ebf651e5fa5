# app/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module implements an HTTP 402 payment gate: requests to protected
endpoints must carry a signed payment assertion in the X-Payment header.

Key components:
- pricing: RequirementBuilder, exact decimal price to smallest-unit conversion
- encoding: base64/JSON header codec
- signing: canonical payment message and signer recovery (EIP-191)
- nonces: NonceLedger replay protection
- validation: PaymentValidator, ordered business rules
- middleware: FastAPI middleware tying it together
- client: paying requests-based client
- audit: JSON-lines decision log

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
