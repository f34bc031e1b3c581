# Overview: Shared extension instances; the SQLAlchemy handle every service writes through, and Alembic migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()
