# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from blinker import Namespace

db = SQLAlchemy()
migrate = Migrate()

# Advisory change notifications; receivers refresh views, they never gate writes.
stock_signals = Namespace()
stock_changed = stock_signals.signal("stock-changed")
