"""Flask application factory."""
from flask import Flask
import os


def create_app(service=None):
    """
    Create and configure the Flask application.

    Args:
        service: Optional MealPlanService; built lazily on first request when omitted
    """
    app = Flask(__name__)

    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', os.urandom(24).hex())

    from config import DATA_DIR
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    if service is not None:
        app.extensions['meal_plan_service'] = service

    # Register blueprints
    from panel.routes import register_blueprints
    register_blueprints(app)

    return app


# For gunicorn: gunicorn -b 0.0.0.0:8080 'panel.app:create_app()'
