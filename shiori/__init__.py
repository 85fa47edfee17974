from flask import Flask

from shiori.api import api_bp
from shiori.auth import auth_bp
from shiori.cli import register_cli
from shiori.config import Config
from shiori.extensions import db, login_manager, migrate


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    register_cli(app)

    with app.app_context():
        db.create_all()

    return app
