# Overview: Flask extension instances for database, migrations and outbound webhooks.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.webhook_service import WebhookDispatcher

db = SQLAlchemy()
migrate = Migrate()
webhooks = WebhookDispatcher()
