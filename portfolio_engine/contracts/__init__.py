"""
Contracts Module

This module defines the shared, immutable types every layer exchanges.
Contracts are the only package a layer may import regardless of its
position in the layer order.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses / Enums)
2. Errors are data (Error / Result), never silent fallbacks
3. Entity references are a closed variant set (EntityType)
4. Identity is hash-based and deterministic
"""
