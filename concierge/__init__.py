"""Concierge: deploy a Nix flake configuration repo to this machine."""

__version__ = "0.3.0"
