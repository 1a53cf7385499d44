"""Onboarding rules that hold regardless of transport or storage.

States and their legal moves, the session value object, membership pricing and
the cross-entity checks live here. Nothing in this package touches the
database or the network.
"""
