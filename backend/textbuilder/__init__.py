"""
TextBuilder - AI Content Generation Platform
============================================

Credit-metered backend for AI article and image generation.

Scope:
- Account credit balance (available + reserved)
- Append-only credit ledger with reporting
- Hold/commit debit protocol around every paid generation
- Interchangeable image providers re-hosted into GridFS
- Lifetime and monthly plans + credit packages via Stripe
- Account settings (preferences, API keys, notifications)
"""

__version__ = "1.0.0"
__product__ = "TextBuilder"
