"""Moderation pipeline: intake, automated decisioning, review and appeals.

Items enter through the intake validator in ``pending_check``, are claimed
and checked by the batch scheduler, and are resolved by admins through the
review queue.  Owners may appeal a rejection exactly once.
"""
