# extensions.py

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Single source of truth for the db object.
# Initialized here, bound to an app in create_app().
db = SQLAlchemy()
migrate = Migrate()
