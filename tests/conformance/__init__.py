"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the loan system.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. payment_conservation.py - Installments sum to the loan value, fees split exactly
2. state_transitions.py - Legal transitions only, rejected calls change nothing
3. metadata_encoding.py - Fixed-width wire encodings, strict decoding, atomic batches
4. swap_policy.py - Profit truncation, decision thresholds, breakeven prices

These tests use hypothesis for property-based testing.
"""
