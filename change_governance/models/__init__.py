"""
Change Governance Engine
SQLAlchemy extension instance shared by every persistence model.

Domain records that are never mapped to tables (ChangeRequest, Alternative,
CommitteeVote, ...) live in ``change_request`` and do not touch ``db``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
