from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:8081",
    "http://127.0.0.1:8081",
    "http://localhost:19006",
    "http://127.0.0.1:19006",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from bhishi.main import main
    flask_app.register_blueprint(main)

    from bhishi.api import register_error_handlers
    from bhishi.api.rounds import rounds
    from bhishi.api.draws import draws
    # Ledger endpoints live under /api to match the mobile API client
    flask_app.register_blueprint(rounds, url_prefix='/api')
    flask_app.register_blueprint(draws, url_prefix='/api')
    register_error_handlers(flask_app)

    # Change feed handlers bind to the initialized socketio instance
    from bhishi.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database with a demo group."""
        from bhishi.models import Group, Member
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            group = Group(name='Demo Bhishi', monthly_amount=1000, group_type='bidding')
            db.session.add(group)
            db.session.flush()
            for name in ['Asha', 'Bharat', 'Chitra', 'Deepak']:
                db.session.add(Member(group_id=group.id, name=name))

            db.session.commit()
            print(f'Database has been reset and seeded! group_id={group.id}')

    flask_app.cli.add_command(db_reset_command)

    # Re-arm deadline timers lost on restart, whichever server launched us
    from bhishi.services.ledger.scheduler import resume_timers_on_startup
    resume_timers_on_startup(flask_app)

    return flask_app
