"""
envrelay — zero-knowledge .env sharing for developer teams.

The relay stores ciphertext only. Every environment is sealed with a
per-project key, and that key travels between members wrapped for each
recipient's public identity.
"""

import os

__version__ = "0.1.0"

ENVRELAY_HOME = os.environ.get("ENVRELAY_HOME", "~/.envrelay")
