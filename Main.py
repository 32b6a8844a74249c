import logging

import click
from flask import Flask

from Ledger.api import api_bp
from Ledger.models import db
from Ledger.scheduler import LedgerScheduler
from config import DevelopmentConfig


def create_app(config_class=DevelopmentConfig):
    """Función de factoría para crear y configurar la aplicación Flask."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s',
    )

    # Inicialización de extensiones
    db.init_app(app)

    # Registro de Blueprints (rutas)
    app.register_blueprint(api_bp)

    # Crea las tablas de la DB si no existen (solo se debe correr en desarrollo)
    with app.app_context():
        db.create_all()

    # Los ciclos de fondo se crean aquí pero solo arrancan con start_scheduler()
    app.extensions['ledger_scheduler'] = LedgerScheduler(app)

    @app.cli.command('run-sweeps')
    def run_sweeps_cli():
        """Ejecuta una vez cada barrido (recurrentes, renovación, capturas)."""
        results = app.extensions['ledger_scheduler'].run_all_once()
        for name, result in results.items():
            click.echo(f"{name}: {result}")

    return app


def start_scheduler(app):
    """Arranca los ciclos de fondo si la configuración lo permite."""
    if not app.config.get('SCHEDULER_ENABLED') or app.config.get('TESTING'):
        return None
    scheduler = app.extensions['ledger_scheduler']
    scheduler.start()
    return scheduler


if __name__ == '__main__':
    # Usar el ambiente de desarrollo por defecto
    app = create_app(DevelopmentConfig)
    scheduler = start_scheduler(app)
    try:
        # Sin recargador: evita arrancar los ciclos dos veces
        app.run(host='0.0.0.0', port=5000, use_reloader=False)
    finally:
        if scheduler is not None:
            scheduler.stop(timeout=5)
