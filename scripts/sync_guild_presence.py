#!/usr/bin/env python3
"""
Run one guild presence sweep synchronously (no Celery): every linked user whose
Discord account has left the server gets unlinked.
Run from the project root: python -m scripts.sync_guild_presence
or: PYTHONPATH=. python scripts/sync_guild_presence.py
"""
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from academy_gate.core.logging import configure_logging
from academy_gate.db.session import SessionLocal
from academy_gate.services.discord.client import GuildClient
from academy_gate.services.membership.models import PresenceOutcome
from academy_gate.services.membership.service import MembershipReconciler
from academy_gate.services.users.store import SqlUserRecordStore


def main():
    configure_logging()
    guild = GuildClient()
    if not guild.configured:
        print("DISCORD_BOT_TOKEN / DISCORD_GUILD_ID are not set in .env, nothing to check.")
        return
    db = SessionLocal()
    try:
        store = SqlUserRecordStore(db)
        reconciler = MembershipReconciler(store, guild)
        linked = list(store.iter_linked())
        unlinked = 0
        for user_id, discord_id in linked:
            if reconciler.sync_presence(user_id, discord_id) == PresenceOutcome.UNLINKED:
                unlinked += 1
                print(f"  unlinked {user_id} (discord {discord_id})")
        print(f"Checked {len(linked)} linked users, unlinked {unlinked}.")
    finally:
        guild.close()
        db.close()


if __name__ == "__main__":
    main()
