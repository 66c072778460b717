"""Minimal DNS responder over UDP."""
