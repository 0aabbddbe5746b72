"""
Database Package
================

Exports key database components.
"""

from selfcorrect.db.models import Base, LearningDocument
from selfcorrect.db.connection import init_db
