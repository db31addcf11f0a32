"""multiflow-sync CLI.

Usage:
    mfsync health                   Probe the API
    mfsync sync-user <uid> ...      Push a user profile
    mfsync sync-sector <id> ...     Push a sector
    mfsync force-sector <id>        Force a server-side sector resync
    mfsync conversation <id> -u U   Load one conversation
    mfsync send <id> <text> -u U    Send a message with quick retries
    mfsync watch <id> -u U          Follow a conversation via push and polling
"""

from multiflow_sync.cli.main import app, main

__all__ = ["app", "main"]
