# Overview: Flask extension instances for database, migrations, and ranking refresh.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.refresher import RankingRefresher

db = SQLAlchemy()
migrate = Migrate()
ranking_refresher = RankingRefresher()
