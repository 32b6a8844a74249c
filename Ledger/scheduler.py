"""Ciclos de fondo: un hilo por tarea periódica.

Cada ciclo ejecuta su barrido completo dentro de un contexto de aplicación y
luego espera su intervalo sobre un ``threading.Event`` compartido. La señal de
parada solo se observa entre barridos, nunca a mitad de una fila.
"""
import logging
import threading

from Ledger.budgets import BudgetService
from Ledger.models import db
from Ledger.periods import utc_now
from Ledger.recurring import RecurringTransactionService
from Ledger.snapshots import SnapshotService

logger = logging.getLogger(__name__)


class SweepLoop(threading.Thread):
    """Ejecuta ``sweep(now)`` cada ``interval`` segundos hasta que se active ``stop_event``."""

    def __init__(self, app, name, interval, sweep, stop_event):
        super().__init__(name=name, daemon=True)
        self.app = app
        self.interval = interval
        self.sweep = sweep
        self.stop_event = stop_event

    def run_once(self):
        with self.app.app_context():
            try:
                return self.sweep(utc_now())
            except Exception:
                # El ciclo sigue vivo; el próximo barrido reintenta las filas pendientes
                logger.exception("Error durante el barrido %s", self.name)
                db.session.rollback()
                return None
            finally:
                db.session.remove()

    def run(self):
        logger.info("Ciclo %s iniciado (cada %s s)", self.name, self.interval)
        while not self.stop_event.is_set():
            self.run_once()
            if self.stop_event.wait(self.interval):
                break
        logger.info("Ciclo %s detenido", self.name)


class LedgerScheduler:
    """Arranca y detiene los tres ciclos del motor."""

    def __init__(self, app):
        self.app = app
        self.stop_event = threading.Event()
        config = app.config
        self.loops = [
            SweepLoop(app, 'recurring-transactions', config['RECURRING_SWEEP_INTERVAL'],
                      RecurringTransactionService.run_processing_sweep, self.stop_event),
            SweepLoop(app, 'budget-renewal', config['BUDGET_RENEWAL_INTERVAL'],
                      BudgetService.run_auto_renewal_sweep, self.stop_event),
            SweepLoop(app, 'daily-snapshots', config['SNAPSHOT_INTERVAL'],
                      SnapshotService.take_daily_snapshots, self.stop_event),
        ]

    def start(self):
        if any(loop.is_alive() for loop in self.loops):
            logger.warning("Los ciclos ya están en ejecución")
            return
        if self.stop_event.is_set() or any(loop.ident is not None for loop in self.loops):
            # Un hilo no se puede reiniciar: se recrean con una señal nueva
            self.stop_event = threading.Event()
            self.loops = [SweepLoop(self.app, loop.name, loop.interval, loop.sweep, self.stop_event)
                          for loop in self.loops]
        for loop in self.loops:
            loop.start()

    def stop(self, timeout=None):
        self.stop_event.set()
        for loop in self.loops:
            if loop.is_alive():
                loop.join(timeout)

    def run_all_once(self):
        """Ejecuta cada barrido una vez, en el hilo actual."""
        return {loop.name: loop.run_once() for loop in self.loops}
