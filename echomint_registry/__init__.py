"""
EchoMint Registry - an NFT ownership registry with curated mood metadata.

This package tracks which identity owns which token, authorizes transfers
and delegated approvals, and lets a single curator update each token's mood
and image. It ships an HTTP service with a Server-Sent Events feed of
registry events and a command-line client.
"""

__version__ = "0.1.0"
