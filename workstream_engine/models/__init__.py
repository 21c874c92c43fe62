"""SQLAlchemy extension instance and persisted models."""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from workstream_engine.models.workstream import Workstream, WorkstreamPermission  # noqa: E402,F401
