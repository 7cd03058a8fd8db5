"""Escrow release state machine and payment-rail adapters."""
